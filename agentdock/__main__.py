"""python -m agentdock"""

from .cli import main

main()
