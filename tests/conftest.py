"""
Shared fixtures for the EV dashboard tests.

Provides a small registrations CSV shaped like the public Electric Vehicle
Population export, the raw/normalized views of it, and a builder for ad-hoc
record frames.
"""
import sys
from pathlib import Path

import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from core.data import load_from_file, normalize_records  # noqa: E402


SAMPLE_CSV = """VIN (1-10),County,City,State,Postal Code,Model Year,Make,Model,Electric Vehicle Type,Clean Alternative Fuel Vehicle (CAFV) Eligibility,Electric Range,Base MSRP
5YJ3E1EB4L,King,Seattle,WA,98122,2020,TESLA,MODEL 3,Battery Electric Vehicle (BEV),Clean Alternative Fuel Vehicle Eligible,322,0
1N4AZ0CP8D,Kitsap,Bremerton,WA,98337,2013,NISSAN,LEAF,Battery Electric Vehicle (BEV),Clean Alternative Fuel Vehicle Eligible,75,0
WBY8P6C58K,King,Bellevue,WA,98004,2019,BMW,I3,Plug-in Hybrid Electric Vehicle (PHEV),Clean Alternative Fuel Vehicle Eligible,126,0
1G1RC6S53J,Thurston,Olympia,WA,98501,2018,CHEVROLET,VOLT,Plug-in Hybrid Electric Vehicle (PHEV),Clean Alternative Fuel Vehicle Eligible,53,0
7SAYGDEE6P,Snohomish,Everett,WA,98201,2023,TESLA,MODEL Y,Battery Electric Vehicle (BEV),Eligibility unknown as battery range has not been researched,0,0
KNDCC3LG2L,King,Seattle,WA,98109,,KIA,NIRO,Plug-in Hybrid Electric Vehicle (PHEV),Not eligible due to low battery range,26,
"""


def make_records(columns: dict) -> pd.DataFrame:
    """Normalize a raw frame given as ``{header: [values, ...]}``."""
    return normalize_records(pd.DataFrame(columns, dtype=object))


@pytest.fixture
def sample_csv_text():
    return SAMPLE_CSV


@pytest.fixture
def sample_csv_path(tmp_path):
    path = tmp_path / "Electric_Vehicle_Population_Data.csv"
    path.write_text(SAMPLE_CSV, encoding="utf-8")
    return path


@pytest.fixture
def sample_raw():
    return load_from_file(SAMPLE_CSV.encode("utf-8"), name="sample.csv")


@pytest.fixture
def sample_records(sample_raw):
    return normalize_records(sample_raw.rows)


@pytest.fixture
def twenty_five_records():
    return make_records({"Make": ["AUDI"] * 20 + ["BMW"] * 5, "Model Year": ["2020"] * 25})
