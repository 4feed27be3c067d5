# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real access tokens. Put them in .env (local, gitignored), see .env.example.

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "SHADOWFLOW_APP_NAME": "App display name (default: ShadowFlow).",
    "SHADOWFLOW_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    "SHADOWFLOW_DATA_DIR": "Local data directory for logs (default: .local/shadowflow).",
    # Connectors
    "SHADOWFLOW_CONSOLE_ENABLED": "Enable the console REPL (true/false). Off = headless sync only.",
    # Task API
    "SHADOWFLOW_API_BASE_URL": "Base URL of the task CRUD API (default: http://localhost:3000/api).",
    "SHADOWFLOW_HTTP_TIMEOUT_SECONDS": "Per-request timeout for the task API (default: 10).",
    # Change feed
    "SHADOWFLOW_REALTIME_URL": "Realtime endpoint, e.g. wss://<project>.supabase.co/realtime/v1.",
    "SHADOWFLOW_API_KEY": "Public (anon) API key of the hosted database, sent on the websocket URL.",
    "SHADOWFLOW_HEARTBEAT_SECONDS": "Realtime heartbeat interval (default: 30).",
    "SHADOWFLOW_FEED_AUTO_RECONNECT": "Reopen the change feed automatically after a drop (default: false).",
    "SHADOWFLOW_RECONNECT_DELAY_SECONDS": "Delay before an automatic reconnect (default: 5).",
    # Session
    "SHADOWFLOW_USER_ID": "Signed-in user id (can also be set at runtime with /signin).",
    "SHADOWFLOW_ACCESS_TOKEN": "Bearer token issued by the identity provider.",
    # Validation
    "SHADOWFLOW_MAX_TITLE_LENGTH": "Maximum task title length accepted locally (default: 200).",
}
