from catalog_addon.core.config import settings
from catalog_addon.core.database import get_db, Base, get_db_session
from catalog_addon.core.security import create_access_token, decode_token
