"""Clone vSphere templates into cluster nodes with cloud-init userdata."""

__version__ = "0.1.0"
