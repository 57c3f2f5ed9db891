"""
ASGI entry point (uvicorn server.asgi:app).

.env is loaded before AppConfig reads the environment.
"""

from dotenv import load_dotenv

load_dotenv()

# pylint: disable=wrong-import-position
from config import AppConfig
from observability.logger import log_event
from server.app import create_app

config = AppConfig.load_from_env()
app = create_app(config)

log_event({
    "event_type": "SERVER_CONFIGURED",
    "env": config.env,
    "agent_backend": config.agent_backend,
    "default_agent_configured": config.default_agent_id is not None,
})
