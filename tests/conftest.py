import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest


@pytest.fixture
def transactions_df():
    rng = np.random.default_rng(0)
    n = 200
    df = pd.DataFrame(rng.normal(size=(n, 4)).astype(np.float32), columns=["V1", "V2", "V3", "Amount"])
    df["Amount"] = df["Amount"].abs() * 100
    df.insert(0, "Time", np.arange(n, dtype=np.float32))
    y = np.zeros(n, dtype=int)
    y[::20] = 1
    df["Class"] = y
    return df


@pytest.fixture
def transactions_csv(tmp_path, transactions_df):
    path = tmp_path / "creditcard.csv"
    transactions_df.to_csv(path, index=False)
    return path


@pytest.fixture
def images():
    rng = np.random.default_rng(1)
    return rng.integers(0, 256, size=(24, 28, 28), dtype=np.uint8)
