DOMAIN = "olarm"
VERSION = "1.2.0"
MANUFACTURER = "Olarm"

# Config entry keys
CONF_ENTRY_NAME = "entry_name"
CONF_USER_EMAIL_PHONE = "user_email_phone"
CONF_USER_PASS = "user_pass"
CONF_COMMAND_TRANSPORT = "command_transport"
CONF_RECONNECT_INTERVAL = "reconnect_interval"
CONF_PENDING_TIMEOUT = "pending_timeout"

TRANSPORT_MQTT = "mqtt"
TRANSPORT_HTTP = "http"

# REST endpoints
AUTH_API_URL = "https://auth.olarm.com/api/v4/oauth/"
LOGIN_URL = AUTH_API_URL + "login/mobile"
FEDERATED_LINK_URL = AUTH_API_URL + "federated-link-existing"
REFRESH_URL = AUTH_API_URL + "refresh"
LEGACY_API_URL = "https://api-legacy.olarm.com/api/v2/"
# Sent with the federated link request, the mobile app uses the same constant
CAPTCHA_TOKEN = "olarmapp"

# Pub/sub broker (MQTT over secure websockets)
MQTT_HOST = "mqtt-ws.olarm.com"
MQTT_PORT = 443
MQTT_WEBSOCKET_PATH = "/mqtt"
MQTT_USERNAME = "native_app"
MQTT_CLIENT_ID_PREFIX = "native-app-oauth-"
MQTT_KEEPALIVE = 60          # seconds
MQTT_CONNECT_TIMEOUT = 10    # seconds, also used for subscribe/publish acknowledgements
MQTT_QOS = 1                 # at-least-once for every publish and subscription

STATUS_TOPIC = "so/app/v1/{imei}"
STATUS_REQUEST_TOPIC = "si/app/v2/{imei}/status"
CONTROL_TOPIC = "si/app/v2/{imei}/control"

ALARM_PAYLOAD_TYPE = "alarmPayload"

# Session timing (seconds)
TOKEN_SAFETY_MARGIN = 5 * 60
DEFAULT_TOKEN_TTL = 60 * 10   # used when the auth server omits an expiry
# An expiry above this is an absolute epoch timestamp, below it a relative TTL
ABSOLUTE_EXPIRY_THRESHOLD = 10 ** 9

# Reconnect policy (seconds)
MIN_RECONNECT_INTERVAL = 5
DEFAULT_RECONNECT_INTERVAL = 5
MAX_RECONNECT_INTERVAL = 300

# Update intervals (seconds)
DEVICES_INTERVAL = 30 * 60   # device list, rarely changes
DEFAULT_PENDING_TIMEOUT = 30  # optimistic target state lifetime in the UI layer

# Session persistence
STORAGE_VERSION = 1
STORAGE_KEY = DOMAIN + ".session.{entry_id}"
