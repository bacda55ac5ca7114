"""Watch local directory trees and mirror them to remote hosts over SFTP."""

__version__ = "1.0.0"
