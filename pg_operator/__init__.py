"""
PostgreSQL database and role provisioning operator for Kubernetes.

Reconciles PostGresConnection and Database custom resources against
CloudNativePG-managed clusters: validates connections, creates databases and
login roles, grants permissions and publishes per-role credential Secrets.
"""

__version__ = "0.1.0"
