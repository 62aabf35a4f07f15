"""
compound_stake: autonomous reward compounding agent for Solana staking programs.

Runs 24/7: resolves stale staking rounds, claims rewards for every configured
account and restakes them, then sleeps until the next round boundary. Operations
are delivered with rebroadcast inside the blockhash window and re-signed when
the window closes unconfirmed.
"""

__version__ = "0.1.0"
