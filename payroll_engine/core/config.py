from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings
from typing import Dict, List, Optional


class CompensationDefaults(BaseModel):
    """Statutory and policy defaults used when resolving a compensation structure.

    Fractions are expressed as decimals (0.40 == 40%). Allowance and flat
    amounts are monthly rupee values.
    """

    model_config = ConfigDict(frozen=True)

    # Earnings
    basic_fraction: Decimal = Decimal("0.40")
    hra_fraction: Decimal = Decimal("0.40")
    fixed_allowances: Dict[str, Decimal] = Field(default_factory=lambda: {
        "MEDICAL": Decimal("1250"),
        "CONVEYANCE": Decimal("1600"),
        "EDUCATION": Decimal("100"),
        "BOOKS": Decimal("0"),
        "UNIFORM": Decimal("0"),
        "MOBILE": Decimal("0"),
        "TRANSPORT": Decimal("0"),
    })
    required_allowances: List[str] = Field(default_factory=list)

    # Employer benefits
    employer_pf_fraction: Decimal = Decimal("0.11")
    gratuity_fraction: Decimal = Decimal("0.0481")
    insurance_monthly: Decimal = Decimal("0")
    pf_wage_cap: Optional[Decimal] = None  # e.g. 15000 to restrict PF to the statutory wage limit

    # Employee deductions
    employee_pf_fraction: Decimal = Decimal("0.12")
    professional_tax_monthly: Decimal = Decimal("200")

    # ESIC applies while monthly gross stays within the wage ceiling
    esic_enabled: bool = True
    esic_wage_ceiling: Decimal = Decimal("21000")
    esic_employer_rate: Decimal = Decimal("0.0325")
    esic_employee_rate: Decimal = Decimal("0.0075")

    reconciliation_tolerance: Decimal = Decimal("1")

    # Components scaled by days present on a payslip; BASIC is always scaled
    prorated_earnings: List[str] = Field(default_factory=lambda: ["BASIC", "HRA", "SPECIAL_ALLOWANCE"])
    prorated_deductions: List[str] = Field(default_factory=lambda: ["EMPLOYEE_PF", "EMPLOYEE_ESIC"])


class Settings(BaseSettings):
    # Database Configuration
    database_url: str = "sqlite:///./payroll.db"

    # Application Configuration
    app_name: str = "Payroll Computation & Snapshot Engine"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list = ["*"]

    # Logging Configuration
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_file_rotation: bool = True

    # Payroll Run Configuration
    payroll_max_workers: int = 4  # Worker threads used for per-employee payslip computation

    # Redis Configuration
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: int = 5
    redis_socket_connect_timeout: int = 5

    # Cache Settings
    enable_redis_cache: bool = False
    preview_cache_ttl: int = 900  # 15 minutes

    # Request limits
    max_request_size: int = 2 * 1024 * 1024  # Bulk attendance uploads are the largest bodies

    # Compensation policy
    compensation: CompensationDefaults = Field(default_factory=CompensationDefaults)

    class Config:
        env_file = ".env"
        case_sensitive = False
        env_nested_delimiter = "__"


# Create settings instance
settings = Settings()
