WORKFLOW = "workflow_status_monitoring"


def _snippet(snippet_id: str, intent: str = WORKFLOW, **extra) -> dict:
    return {"id": snippet_id, "name": snippet_id, "intent": intent, **extra}


def test_list_composition_chains(client):
    response = client.get("/query/composition/chains")

    assert response.status_code == 200
    chains = {chain["intent"]: chain for chain in response.json()}
    assert set(chains) == {"temporal_proximity_query", "assessment_correlation_check", WORKFLOW}
    workflow = chains[WORKFLOW]
    assert workflow["requiredOrder"] is False
    assert workflow["optionalSteps"] == ["document_age_calculation"]
    assert workflow["visualization"].startswith("Chain: assessment_type_lookup_by_semantic_concept")


def test_validate_valid_composition(client):
    response = client.post(
        "/query/composition/validate",
        json={
            "intent": WORKFLOW,
            "snippets": [
                _snippet("assessment_type_lookup_by_semantic_concept", outputs=["@assessmentTypeId"]),
                _snippet("workflow_enum_status_filter", inputs=["@assessmentTypeId", "{status}"]),
            ],
        },
    )

    assert response.status_code == 200, response.text
    payload = response.json()
    assert payload["valid"] is True
    assert payload["appliedChain"]["name"] == "Workflow Status with Age"
    assert payload["message"] == f'Valid composition for intent "{WORKFLOW}"'


def test_validate_composition_reports_missing_snippet(client):
    response = client.post(
        "/query/composition/validate",
        json={"intent": WORKFLOW, "snippets": [_snippet("workflow_enum_status_filter")]},
    )

    payload = response.json()
    assert payload["valid"] is False
    assert payload["appliedChain"] is None
    assert payload["errors"][0].startswith("Missing required snippet: assessment_type_lookup_by_semantic_concept")
    assert "Errors:" in payload["message"]


def test_validate_composition_with_unknown_intent(client):
    response = client.post("/query/composition/validate", json={"intent": "guesswork", "snippets": []})

    assert response.status_code == 200
    assert response.json()["valid"] is False


def test_sql_validation_rejects_dropped_filter(client):
    response = client.post(
        "/query/sql/validate",
        json={
            "sql": "SELECT w.etiology FROM rpt.Wound w WHERE w.patientFk = 7",
            "filters": [
                {"field": "etiology", "operator": "=", "value": "diabetic", "originalText": "diabetic wounds"},
                {"field": "patientFk", "operator": "=", "value": 7},
            ],
        },
    )

    assert response.status_code == 200, response.text
    payload = response.json()
    assert payload["verdict"] == "reject"
    assert [item["field"] for item in payload["droppedFilters"]] == ["etiology"]
    assert [item["field"] for item in payload["appliedFilters"]] == ["patientFk"]
    assert payload["droppedFilters"][0]["originalText"] == "diabetic wounds"
    assert payload["details"]["hasWhereClause"] is True
    assert payload["details"]["whereClauseContent"] == "w.patientFk = 7"


def test_sql_validation_clarifies_missing_snippet(client):
    response = client.post(
        "/query/sql/validate",
        json={
            "sql": "WITH BaselineData AS (SELECT 1 AS x) SELECT x FROM BaselineData",
            "snippets": [
                _snippet("baseline_measurement_per_wound", outputs=["BaselineData"]),
                _snippet("workflow_enum_status_filter", requiredContext=["statusFk"]),
            ],
        },
    )

    payload = response.json()
    assert payload["verdict"] == "clarify"
    assert payload["usedSnippets"] == ["baseline_measurement_per_wound"]
    assert payload["missingSnippets"] == ["workflow_enum_status_filter"]
    assert payload["details"]["cteNames"] == ["BaselineData"]


def test_sql_validation_rejects_empty_sql(client):
    response = client.post("/query/sql/validate", json={"sql": ""})

    payload = response.json()
    assert payload["verdict"] == "reject"
    assert payload["errors"] == ["SQL is empty or null"]


def test_complexity_uses_default_thresholds(client):
    response = client.post("/query/complexity", json={"question": "How many patients?"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["strategy"] == "auto"
    assert payload["strategyLabel"] == "Auto Execute"
    assert payload["indicators"]["multiStep"] is False
    assert payload["explanation"].startswith("This is a simple query")


def test_complexity_accepts_custom_thresholds(client):
    response = client.post(
        "/query/complexity",
        json={
            "question": "Find open wounds then show their latest measurement",
            "thresholds": {"simple": 1, "medium": 2, "complex": 10},
        },
    )

    payload = response.json()
    assert payload["score"] == 3
    assert payload["complexity"] == "complex"
    assert payload["strategy"] == "inspect"


def test_complexity_rejects_unordered_thresholds(client):
    response = client.post(
        "/query/complexity",
        json={"question": "How many patients?", "thresholds": {"simple": 8, "medium": 5}},
    )

    assert response.status_code == 422


def test_complexity_requires_question(client):
    response = client.post("/query/complexity", json={"question": ""})

    assert response.status_code == 422
