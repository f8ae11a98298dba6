"""
tenantguard -- Role-Based Access Control Core
=============================================

Authorization core for a multi-tenant business-management application.
Provides a static, total permission matrix over roles, resources and
actions, an "own resource" ownership qualifier, a permission gate that
audits every denial, and a route access resolver that gates whole-page
navigation.

Identity (who is asking) and persistence (where audit records go) are
external collaborators passed in explicitly.
"""

import logging

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
