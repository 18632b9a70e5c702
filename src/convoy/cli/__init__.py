"""
Convoy CLI Module

Command-line entry point: ``convoy <mode> -p playbook.yml -i inventory/``.
"""
