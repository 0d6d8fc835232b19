"""Territory backend client components (session, response handling, service)."""

from .features import TerritoryFeature, parse_feature, parse_features  # noqa: F401
from .service import TerritoryClient, TerritoryService  # noqa: F401
from .session import create_default_session, get_default_session  # noqa: F401
