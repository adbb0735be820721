import io

import pytest

from race_signals.errors import ConfigurationError
from race_signals.estimates import read_estimates
from race_signals.schemas import CompetitorEntry
from race_signals.tracking.catalog import InMemoryCatalog

ESTIMATORS = ["mlp", "rf", "ensemble"]


def test_read_estimates_keeps_present_values():
    csv = io.StringIO(
        "event_id,competitor_id,mlp,rf,ensemble,notes\n"
        "r1,007,0.3,0.2,0.25,x\n"
        "r1,h2,,abc,0.1,\n"
        "r1,h3,-0.1,,,\n"
        ",h4,0.5,0.5,0.5,\n"
    )
    rows = read_estimates(csv, ESTIMATORS)
    assert rows == [
        ("r1", "007", {"mlp": 0.3, "rf": 0.2, "ensemble": 0.25}),
        ("r1", "h2", {"ensemble": 0.1}),
    ]


def test_read_estimates_requires_id_columns():
    with pytest.raises(ConfigurationError):
        read_estimates(io.StringIO("race,horse,mlp\nr1,h1,0.2\n"), ESTIMATORS)


@pytest.mark.asyncio
async def test_probabilities_merge_into_existing_entries_only():
    catalog = InMemoryCatalog()
    await catalog.upsert_entries([CompetitorEntry(event_id="r1", competitor_id="h1", probabilities={"rf": 0.4})])
    n = await catalog.update_probabilities([("r1", "h1", {"mlp": 0.3}), ("r1", "zz", {"mlp": 0.1})])
    assert n == 1
    assert catalog.entries[("r1", "h1")].probabilities == {"rf": 0.4, "mlp": 0.3}
    assert ("r1", "zz") not in catalog.entries

    # later metadata refreshes keep loaded probabilities
    await catalog.upsert_entries([CompetitorEntry(event_id="r1", competitor_id="h1", name="Renamed")])
    assert catalog.entries[("r1", "h1")].probabilities == {"rf": 0.4, "mlp": 0.3}
    assert catalog.entries[("r1", "h1")].name == "Renamed"
