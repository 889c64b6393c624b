from greenci.auth.permissions import Permission
from greenci.auth.roles import Role, ROLE_PERMISSIONS
from greenci.auth.context import RequestContext

__all__ = ["Permission", "Role", "ROLE_PERMISSIONS", "RequestContext"]
