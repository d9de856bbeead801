"""Entry point for running lab_order_automation as a module.

This allows the package to be executed as:
    python -m lab_order_automation
"""

from lab_order_automation.cli.main import cli

if __name__ == "__main__":
    cli()
