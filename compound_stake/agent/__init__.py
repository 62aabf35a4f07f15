"""
Agent package: signing accounts, the staking program adapter seam, and the
long-running runtime (python -m compound_stake).
"""

from compound_stake.agent.accounts import Account, load_accounts
from compound_stake.agent.program import StakingProgram, create_program

__all__ = ["Account", "StakingProgram", "create_program", "load_accounts"]
