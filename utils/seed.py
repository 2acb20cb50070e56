import logging

from models import db
from models.user import Role

logger = logging.getLogger(__name__)

# USER rents, LANDLORD lists properties and decides on requests, ADMIN moderates
DEFAULT_ROLES = ["USER", "LANDLORD", "ADMIN"]
# roles a visitor may pick when registering; ADMIN is granted through `flask make-admin`
SELF_SERVICE_ROLES = ("USER", "LANDLORD")


def seed_roles():
    existing = {r.name for r in Role.query.all()}
    missing = [name for name in DEFAULT_ROLES if name not in existing]
    for name in missing:
        db.session.add(Role(name=name))
    db.session.commit()
    if missing:
        logger.info("Seeded roles: %s", ", ".join(missing))
    return missing


def grant_role(user, role_name):
    """Attach ``role_name`` to ``user``, creating the role row if seeding never ran.

    Returns False when the user already held the role. The caller commits.
    """
    role = Role.query.filter_by(name=role_name).first()
    if role is None:
        role = Role(name=role_name)
        db.session.add(role)
    if role in user.roles:
        return False
    user.roles.append(role)
    return True
