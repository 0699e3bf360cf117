import numpy as np
import pandas as pd
import pytest


@pytest.fixture(scope='session')
def daily_series():
    """One year of simulated daily temperature and deaths with a U-shaped association."""
    rng = np.random.default_rng(2017)
    n = 365
    time = np.arange(1, n + 1)
    dates = pd.date_range('2001-01-01', periods=n, freq='D')

    tmean = 12 + 7 * np.sin(2 * np.pi * (time - 100) / 365) + rng.normal(0, 2.5, n)
    log_mu = 4 + 0.03 * np.maximum(tmean - 18, 0) + 0.02 * np.maximum(8 - tmean, 0)
    death = rng.poisson(np.exp(log_mu))

    return pd.DataFrame({
        'date': dates,
        'time': time,
        'tmean': tmean,
        'death': death,
        'dow': dates.day_name(),
    })
