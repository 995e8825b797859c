# =============================================================================
# imap-relay Entry Point for `python -m imap_relay`
# =============================================================================
# This module allows imap-relay to be run as a Python module:
#
#   python -m imap_relay relay.toml
#
# This is equivalent to running the 'imap-relay' command after installation.
# =============================================================================

import sys

from imap_relay.app import main

if __name__ == "__main__":
    sys.exit(main())
