"""
AuthBridge: polkit authentication agent for the desktop session.

AuthBridge registers with polkitd over the system bus. When a privileged
action needs interactive approval, polkitd calls BeginAuthentication;
AuthBridge runs the distribution's setuid helper (polkit-agent-helper-1)
for each candidate identity, relays the helper's PAM conversation to a
human through a prompt surface, and reports the outcome back.

Package layout (src/authbridge/):
  core/helper/  : helper line protocol, subprocess host, protocol driver
  core/session/ : session model, identity selector, session manager
  core/prompt/  : prompt request/response models and the prompt relay
  core/agent/   : agent registrar and the bus connector interface
  core/daemon/  : process lifetime orchestration
  surfaces/     : prompt surfaces (console)
  bus/          : D-Bus connector (dbus-python, optional extra)
  cli/          : Click CLI entry point
"""

__version__ = "0.3.0"
__all__ = ["__version__"]
