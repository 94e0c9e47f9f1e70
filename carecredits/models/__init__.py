# Models package — import all models here so Alembic can discover them.

from carecredits.models.credits import CreditBalance, CreditPurchase  # noqa: F401
