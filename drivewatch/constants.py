"""
Shared constants for Drive Watch.
"""

# MIME types the content normalizer understands
MIME_GOOGLE_DOC = "application/vnd.google-apps.document"
MIME_GOOGLE_SHEET = "application/vnd.google-apps.spreadsheet"
MIME_FOLDER = "application/vnd.google-apps.folder"
MIME_CSV = "text/csv"
MIME_XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# Remote APIs
DRIVE_API = "https://www.googleapis.com/drive/v3"
DOCS_API = "https://docs.googleapis.com/v1/documents"
SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
SHEETS_EXPORT = "https://docs.google.com/spreadsheets/d"

# Read-only access is enough: we only watch and fetch
OAUTH_SCOPES = [
    "https://www.googleapis.com/auth/drive.readonly",
    "https://www.googleapis.com/auth/documents.readonly",
    "https://www.googleapis.com/auth/spreadsheets.readonly",
]

# Drive caps web_hook channels at one week for files.list/changes
CHANNEL_TTL_SECONDS = 7 * 24 * 60 * 60

DEFAULT_FILE_NAME = "cloud_file"
UNSUPPORTED_TEMPLATE = "Unsupported or unhandled file type: {mime_type}"
