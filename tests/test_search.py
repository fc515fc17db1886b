"""Tests for keyword search across lists, items and comments."""


def test_search_ranks_and_filters_by_visibility(client, login, make_user):
    make_user("bob@example.com")
    login("bob@example.com")
    client.post("/api/lists", json={"title": "Budget secrets"})
    client.post("/api/lists", json={"title": "Public budget notes", "is_public": True})

    login("admin@example.com")
    r = client.post("/api/lists", json={"title": "Budget review", "description": "Quarterly budget numbers"})
    review_id = r.json["list"]["id"]
    r = client.post("/api/lists", json={"title": "Home"})
    home_id = r.json["list"]["id"]
    client.post(f"/api/lists/{home_id}/items", json={"title": "Budget spreadsheet"})
    client.post(f"/api/lists/{home_id}/comments", json={"content": "The budget looks tight"})

    r = client.get("/api/search?q=budget")
    assert r.status_code == 200
    assert r.json["query"] == "budget"
    results = r.json["results"]
    titles = [h["title"] for h in results]
    assert "Budget secrets" not in titles
    assert "Public budget notes" in titles
    assert r.json["total_count"] == 4

    assert results[0]["type"] == "List"
    assert results[0]["id"] == review_id
    assert results[0]["relevance"] == 3
    assert results[-1]["type"] == "Comment"
    assert results[-1]["title"] == "Comment on Home"
    assert results[-1]["list_id"] == home_id
    relevances = [h["relevance"] for h in results]
    assert relevances == sorted(relevances, reverse=True)


def test_equal_relevance_prefers_newest(client, login):
    login("admin@example.com")
    client.post("/api/lists", json={"title": "Garden plan"})
    client.post("/api/lists", json={"title": "Garden tools"})
    r = client.get("/api/search?q=garden")
    assert [h["title"] for h in r.json["results"]] == ["Garden tools", "Garden plan"]


def test_search_limit_and_blank_query(client, login):
    login("admin@example.com")
    for n in range(3):
        client.post("/api/lists", json={"title": f"Errand {n}"})

    r = client.get("/api/search?q=errand&limit=2")
    assert r.json["total_count"] == 2

    r = client.get("/api/search?q=")
    assert r.json == {"query": "", "results": [], "total_count": 0}


def test_collaborators_find_shared_lists(client, login, make_user):
    make_user("bob@example.com")
    login("admin@example.com")
    r = client.post("/api/lists", json={"title": "Shared vacation"})
    client.post(f"/api/lists/{r.json['list']['id']}/invitations", json={"email": "bob@example.com"})

    login("bob@example.com")
    r = client.get("/api/search?q=vacation")
    assert [h["title"] for h in r.json["results"]] == ["Shared vacation"]


def test_search_requires_login(client):
    assert client.get("/api/search?q=anything").status_code == 401


def test_like_wildcards_match_literally(client, login):
    login("admin@example.com")
    client.post("/api/lists", json={"title": "Groceries"})
    client.post("/api/lists", json={"title": "100 tasks"})
    client.post("/api/lists", json={"title": "Done 100%"})

    assert client.get("/api/search?q=_").json["results"] == []
    r = client.get("/api/search", query_string={"q": "100%"})
    assert [(h["title"], h["relevance"]) for h in r.json["results"]] == [("Done 100%", 2)]

    assert client.get("/api/lists?q=_").json["lists"] == []
    r = client.get("/api/lists", query_string={"q": "100%"})
    assert [lst["title"] for lst in r.json["lists"]] == ["Done 100%"]
