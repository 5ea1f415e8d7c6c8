"""Allow running with: python -m discord_zendesk"""

from discord_zendesk.cli import main

main()
