from flask import Blueprint

# Create the versioned blueprint
v1_bp = Blueprint("v1", __name__)

EDITOR_ROLES = ("admin", "editor")
ADMIN_ROLES = ("admin",)
# Global workflows are shared by every site; a site admin may not write them
PLATFORM_ADMIN_ROLES = ("platform_admin",)

# Import route modules so they register with v1_bp
from . import health
from . import documents
from . import versions
from . import workflow
from . import scheduling
from . import previews
from . import public_previews
from . import audit
from . import assist
