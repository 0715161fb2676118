"""Global constants for hotserve."""

# Listener defaults
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_APP_NAME = "website"
PRIVILEGED_PORT_LIMIT = 1024

# Template substitution tokens look like %KEY%
TEMPLATE_TOKEN_DELIMITER = "%"

# Length of producer ids in hex characters
PRODUCER_ID_LENGTH = 32

# URL/Routing defaults
HOTSERVE_MANAGEMENT_PREFIX = "/__hotserve__"
HOT_EVENTS_PATH = f"{HOTSERVE_MANAGEMENT_PREFIX}/events"
SERVICE_WORKER_PATH = "/service-worker.js"

# Built-in middleware priorities; user middleware usually sits above these
PRIORITY_SERVICE_WORKER = 0
PRIORITY_COMPRESSION = 10
PRIORITY_PROXY = 20
PRIORITY_USER = 100

# Header names for request forwarding
HOTSERVE_PROXY_HEADER = "x-hotserve-proxy"
