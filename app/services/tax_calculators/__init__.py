"""
NairaPay Core - Tax Calculators Package

Pure PAYE engine for the Nigerian personal income tax regimes.

Modules:
- tax_band_engine: progressive bands, period tax rounding
- tax_table_resolver: date-based table selection and table snapshots
- statutory_tables: PITA 2011 and NTA 2025 tables
- relief_calculator: exemption, CRA, rent relief and contribution reliefs
- paye_calculator: PAYE for one employee, regime comparison
"""

from app.services.tax_calculators.tax_band_engine import (
    BandSpec,
    BandTaxResult,
    TaxBandEngine,
    annualize,
    period_tax,
    to_money,
)
from app.services.tax_calculators.tax_table_resolver import (
    ReliefSpec,
    TaxTableResolver,
    TaxTableSnapshot,
    select_applicable_table,
    validate_bands,
)
from app.services.tax_calculators.statutory_tables import (
    NTA_2025_TABLE,
    PITA_2011_TABLE,
    STATUTORY_TABLES,
)
from app.services.tax_calculators.relief_calculator import (
    AppliedRelief,
    ProofStatus,
    ReliefCalculator,
    ReliefResult,
    TaxSettingsSnapshot,
)
from app.services.tax_calculators.paye_calculator import (
    PAYECalculator,
    TaxCalculationResult,
    compare_tax_regimes,
)


__all__ = [
    # Bands
    "BandSpec",
    "BandTaxResult",
    "TaxBandEngine",
    "annualize",
    "period_tax",
    "to_money",
    # Tables
    "ReliefSpec",
    "TaxTableResolver",
    "TaxTableSnapshot",
    "select_applicable_table",
    "validate_bands",
    "NTA_2025_TABLE",
    "PITA_2011_TABLE",
    "STATUTORY_TABLES",
    # Reliefs
    "AppliedRelief",
    "ProofStatus",
    "ReliefCalculator",
    "ReliefResult",
    "TaxSettingsSnapshot",
    # PAYE
    "PAYECalculator",
    "TaxCalculationResult",
    "compare_tax_regimes",
]
