"""
SquadUp - Esports tournament marketplace for PUBG/BGMI

Players sign up, join tournaments with their squad, report results and get
paid into an in-app wallet.
"""

__version__ = "0.1.0"
