"""sshcourier - SSH connection profiles with automated login."""

__version__ = "1.0.0"
