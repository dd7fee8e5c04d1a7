"""
End-to-end: raw federal and state documents bridged into one provider,
then flagged by the fraud analyzer.
"""

from tracker.bridge import BridgeConfig, BridgePipeline, get_adapter, store_raw_document
from tracker.entity_resolution import EntityResolver, ResolverConfig
from tracker.fraud_analyzer import AnalyzerConfig, FraudAnalyzer
from tracker.models import FinancialFact, FundingStream, Provider, Severity, SourceLink
from tracker.queries import get_indicator_summary, list_fraud_indicators

FEDERAL_AWARDS = {
    "fiscal_year": 2024,
    "records": [
        {
            "recipient_name": "Sunrise Early Learning Center Inc",
            "award_id": "FAIN-1",
            "award_amount": "500000",
            "start_date": "2023-11-01",
            "recipient_city": "Concord",
            "recipient_state": "NH",
            "recipient_zip": "03301",
        },
    ],
}

STATE_PAYMENTS = [
    {
        "vendor_name": "Sunrise Early Learning Ctr",
        "vendor_code": "VC-001",
        "amount": "$4,800,000.00",
        "transaction_date": "2024-03-15",
        "department": "Health and Human Services",
        "transaction_id": "T-1",
        "city": "Concord",
        "zip": "03301",
    },
]


def bridge_all(db):
    resolver = EntityResolver(db, ResolverConfig())
    results = {}
    for source_key in ("usaspending", "transparent_nh"):
        pipeline = BridgePipeline(db, get_adapter(source_key), resolver=resolver,
                                  config=BridgeConfig(chunk_size=10))
        results[source_key] = pipeline.run()
    return results


def test_federal_and_state_money_meet_at_one_provider(db):
    store_raw_document(db, "usaspending", FEDERAL_AWARDS, url="https://api.usaspending.gov")
    store_raw_document(db, "transparent_nh", STATE_PAYMENTS)
    db.commit()

    results = bridge_all(db)
    assert results["usaspending"].providers_created == 1
    assert results["transparent_nh"].providers_created == 0
    assert results["transparent_nh"].imported == 1

    provider = db.query(Provider).one()
    facts = db.query(FinancialFact).all()
    assert {f.funding_stream for f in facts} == {FundingStream.FEDERAL, FundingStream.STATE}
    assert all(f.provider_id == provider.id for f in facts)
    assert db.query(SourceLink).count() == 2

    analysis = FraudAnalyzer(db, AnalyzerConfig()).run()
    assert analysis.detector_counts["cross_source_overlap"] == 1

    flagged = list_fraud_indicators(db, provider_id=provider.id).items
    assert [i.indicator_type for i in flagged] == ["federal_state_overlap"]
    assert flagged[0].severity == Severity.MEDIUM
    assert flagged[0].description.startswith(
        "Federal ($500,000.00) + State ($4,800,000.00) = $5,300,000.00"
    )
    assert get_indicator_summary(db)["total_open_indicators"] == 1


def test_full_run_is_repeatable(db):
    store_raw_document(db, "usaspending", FEDERAL_AWARDS)
    store_raw_document(db, "transparent_nh", STATE_PAYMENTS)
    db.commit()
    bridge_all(db)
    FraudAnalyzer(db, AnalyzerConfig()).run()

    # Same documents scraped again
    store_raw_document(db, "usaspending", FEDERAL_AWARDS)
    store_raw_document(db, "transparent_nh", STATE_PAYMENTS)
    db.commit()
    results = bridge_all(db)
    analysis = FraudAnalyzer(db, AnalyzerConfig()).run()

    assert results["usaspending"].duplicates == 1
    assert results["transparent_nh"].duplicates == 1
    assert analysis.created == 0
    assert db.query(FinancialFact).count() == 2
    assert db.query(Provider).count() == 1
