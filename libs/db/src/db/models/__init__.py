"""ORM models registry for the workspace database.

Holds the portfolio ledger tables used by ``portfolio_ledger.persistence``.
"""

from .portfolio import Base, Portfolio, PortfolioTransaction

__all__ = [
    "Base",
    "Portfolio",
    "PortfolioTransaction",
]
