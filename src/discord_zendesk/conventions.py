"""Bridge Conventions - IMMUTABLE

Canonical names, paths and protocol constants the bridge agrees on.
These values are NOT configurable.

Things that CAN be configured (via bridge.yaml / keys.yaml / env):
- public site URL, secrets, delays, buffer limits

Things that CANNOT be configured (defined HERE):
- home directory layout and filenames
- Discord and Zendesk protocol constants
- the compound id delimiter and the sentinel tag prefix
"""

# --- The Root ---
BRIDGE_HOME = "~/.discord-zendesk"

# --- Configuration ---
BRIDGE_CONFIG_FILENAME = "bridge.yaml"
KEYS_FILENAME = "keys.yaml"
ENV_FILENAME = ".env"

# --- Server ---
SERVER_DEFAULT_PORT = 8080
SERVER_LOG_FILE = "bridge.log"

# --- Identifiers ---
# Discord snowflakes are decimal digits, so "-" never occurs inside one.
ID_DELIMITER = "-"
DELETE_SUFFIX = "delete"
# Zendesk tag that carries the Discord thread id back on status webhooks
SENTINEL_TAG_PREFIX = "do-not-remove-discord-"
EMPTY_MESSAGE_PLACEHOLDER = "*No message content*"
THREAD_DELETED_MESSAGE = "Thread deleted."
RESOLVED_NOTICE = (
    "This post has been marked as resolved and is now locked. "
    "Feel free to open a new post if you need more help."
)
RESOLVED_STATUSES = frozenset({"solved", "closed"})

# --- Discord ---
DISCORD_API_BASE_URL = "https://discord.com/api/v10"
DISCORD_GATEWAY_URL = "wss://gateway.discord.gg/?v=10&encoding=json"
DISCORD_WEB_URL = "https://discord.com/channels"
DISCORD_CDN_URL = "https://cdn.discordapp.com"
DISCORD_CDN_HOSTS = ("cdn.discordapp.com", "media.discordapp.net")

DISCORD_INTENT_GUILDS = 1 << 0
DISCORD_INTENT_GUILD_MESSAGES = 1 << 9
DISCORD_INTENT_MESSAGE_CONTENT = 1 << 15

CHANNEL_TYPE_GUILD_FORUM = 15
THREAD_CHANNEL_TYPES = frozenset({10, 11, 12})
MESSAGE_TYPE_THREAD_STARTER = 21

# Close/Reopen buttons carried by the greeting
BUTTON_CLOSE = "close"
BUTTON_REOPEN = "reopen"
INTERACTION_TYPE_MESSAGE_COMPONENT = 3
COMPONENT_TYPE_ACTION_ROW = 1
COMPONENT_TYPE_BUTTON = 2
BUTTON_STYLE_PRIMARY = 1
BUTTON_STYLE_DANGER = 4
INTERACTION_CALLBACK_UPDATE_MESSAGE = 7

# --- Zendesk ---
ZENDESK_PUSH_URL = "https://{subdomain}.zendesk.com/api/v2/any_channel/push"
ZENDESK_VALIDATE_URL = (
    "https://{subdomain}.zendesk.com/api/v2/any_channel/validate_token"
)
WEBHOOK_SIGNATURE_HEADER = "X-Zendesk-Webhook-Signature"
WEBHOOK_TIMESTAMP_HEADER = "X-Zendesk-Webhook-Signature-Timestamp"

# --- Related threads (optional) ---
EMBEDDING_MODEL = "text-embedding-ada-002"
EMBEDDING_DIMENSIONS = 1536
OPENAI_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"
RELATED_THREAD_LIMIT = 5
