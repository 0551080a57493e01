USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

VIEWPORT = {"width": 1920, "height": 1080}

CONFIG_FILE = "config.json"
MANIFEST_FILE = "manifest.json"
INDEX_FILE = "index.html"
SCHEMA_VERSION = 1

COURSE_SUBDIRS = ("videos", "documents", "html", "images")

MAX_FILENAME_LENGTH = 200
UNKNOWN_COURSE = "Unknown Course"

# Navigation (milliseconds unless stated otherwise)
DEFAULT_TIMEOUT = 30000
AUTH_NAVIGATION_TIMEOUT = 120000
AUTH_SETTLE_DELAY = 5  # seconds
VIDEO_PLAYER_TIMEOUT = 10000
CLICK_TIMEOUT = 2000

DOCUMENT_EXTENSIONS = (
    ".pdf",
    ".doc",
    ".docx",
    ".ppt",
    ".pptx",
    ".xls",
    ".xlsx",
    ".zip",
    ".rar",
)

DOCUMENTS_SELECTOR = ", ".join(f'a[href$="{ext}"]' for ext in DOCUMENT_EXTENSIONS)

# Patterns for lesson lists and accordions that start collapsed
EXPAND_SELECTORS = [
    '[aria-expanded="false"]',
    "details:not([open]) > summary",
    "button.collapsed",
    '[class*="collapsed"]',
    '[class*="Accordion"] button',
    '[class*="accordion"] button',
    '[class*="section-header"]',
    '[data-toggle="collapse"]',
]

# Hints that a .mp4/.ts request belongs to a video player
VIDEO_URL_HINTS = ("video", "media", "stream", "vod", "play", "hls")
