DEFAULT_CLUSTER = "default"

# Namespace naming convention of the Apollo config service
PROPERTIES_SUFFIX = ".properties"
NAMESPACE_SUFFIXES = (PROPERTIES_SUFFIX, ".xml", ".json", ".yml", ".yaml", ".txt")

# Non-properties namespaces carry their whole payload under this key
CONTENT_KEY = "content"

# Notification id Apollo expects for a namespace that was never seen
INITIAL_NOTIFICATION_ID = -1

# Timing constants (in seconds)
APOLLO_CONNECTION_TIMEOUT = 30
# Config service holds a notification request for 60 seconds before
# answering 304, the read timeout must stay above that.
APOLLO_LONG_POLL_TIMEOUT = 90
APOLLO_RETRY_INTERVAL = 5

USER_AGENT = "apollo-config-sync"

# Materialized files are read by other processes
MATERIALIZED_FILE_MODE = 0o644
