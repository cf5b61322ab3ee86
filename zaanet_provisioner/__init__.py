"""
ZaaNet Router Provisioner

Turns an OpenWrt access point into a captive-portal gateway:
- Router identity and admin device detection
- Splash page download, deployment and configuration injection
- Transactional gateway, firewall and wireless configuration
- Background refresh jobs (network info cache, usage metrics)
"""

__version__ = "1.5.0"
