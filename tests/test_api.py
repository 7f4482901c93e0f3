"""
Integration tests for the ledger HTTP API
Tests end-to-end flows using FastAPI TestClient over in-memory SQLite
"""

from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient

from account_ledger.api import create_app
from account_ledger.config import LedgerConfig
from account_ledger.migrations import SEED_CUSTOMER_LIMITS


@pytest.fixture
def client():
    """Test client with the five seeded customers"""
    config = LedgerConfig(db_conn_str="sqlite:///:memory:", seed_customers=True, log_level="WARNING")
    with TestClient(create_app(config)) as client:
        yield client


def post_transaction(client, customer_id, value, tx_type, description, prefix="/customers"):
    suffix = "transacoes" if prefix == "/clientes" else "transactions"
    return client.post(
        f"{prefix}/{customer_id}/{suffix}",
        json={"valor": value, "tipo": tx_type, "descricao": description}
    )


class TestHealthEndpoint:
    
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"
    
    def test_request_id_is_echoed(self, client):
        r = client.get("/health", headers={"X-Request-ID": "abc123"})
        assert r.headers["X-Request-ID"] == "abc123"
        
        r = client.get("/health")
        assert r.headers["X-Request-ID"]


class TestTransactionFlow:
    """End-to-end transaction and statement flows"""
    
    def test_debit_then_statement(self, client):
        r = post_transaction(client, 1, 500, "d", "compra")
        assert r.status_code == 200
        assert r.json() == {"limite": SEED_CUSTOMER_LIMITS[0], "saldo": -500}
        
        r = client.get("/customers/1/statement")
        assert r.status_code == 200
        data = r.json()
        assert data["saldo"]["total"] == -500
        assert data["saldo"]["limite"] == SEED_CUSTOMER_LIMITS[0]
        assert "data_extrato" in data["saldo"]
        assert len(data["ultimas_transacoes"]) == 1
        
        transaction = data["ultimas_transacoes"][0]
        assert transaction["valor"] == 500
        assert transaction["tipo"] == "d"
        assert transaction["descricao"] == "compra"
        assert "realizada_em" in transaction
    
    def test_credit(self, client):
        r = post_transaction(client, 2, 1000, "c", "salario")
        assert r.status_code == 200
        assert r.json() == {"limite": SEED_CUSTOMER_LIMITS[1], "saldo": 1000}
    
    def test_insufficient_limit(self, client):
        limit = SEED_CUSTOMER_LIMITS[1]
        r = post_transaction(client, 2, limit, "d", "tudo")
        assert r.status_code == 200
        
        r = post_transaction(client, 2, 1, "d", "mais um")
        assert r.status_code == 422
        
        r = client.get("/customers/2/statement")
        data = r.json()
        assert data["saldo"]["total"] == -limit
        assert len(data["ultimas_transacoes"]) == 1
    
    def test_statement_without_transactions(self, client):
        r = client.get("/customers/3/statement")
        assert r.status_code == 200
        data = r.json()
        assert data["saldo"]["total"] == 0
        assert data["saldo"]["limite"] == SEED_CUSTOMER_LIMITS[2]
        assert data["ultimas_transacoes"] == []
    
    def test_statement_lists_last_ten_newest_first(self, client):
        for i in range(12):
            assert post_transaction(client, 4, i + 1, "c", f"n{i}").status_code == 200
        
        data = client.get("/customers/4/statement").json()
        descriptions = [t["descricao"] for t in data["ultimas_transacoes"]]
        assert descriptions == [f"n{i}" for i in range(11, 1, -1)]
    
    def test_unknown_customer(self, client):
        assert client.get("/customers/6/statement").status_code == 404
        assert post_transaction(client, 6, 10, "c", "x").status_code == 404
        assert client.get("/customers/0/statement").status_code == 404
        assert client.get("/customers/99999999999/statement").status_code == 404
    
    def test_portuguese_routes(self, client):
        r = post_transaction(client, 5, 10, "c", "oi", prefix="/clientes")
        assert r.status_code == 200
        assert r.json()["saldo"] == 10
        
        r = client.get("/clientes/5/extrato")
        assert r.status_code == 200
        assert r.json()["ultimas_transacoes"][0]["descricao"] == "oi"

    def test_only_english_routes_are_documented(self, client):
        paths = client.get("/openapi.json").json()["paths"]
        assert "/customers/{customer_id}/statement" in paths
        assert "/customers/{customer_id}/transactions" in paths
        assert not any(path.startswith("/clientes") for path in paths)

    def test_concurrent_debits(self, client):
        """Only as many debits as the limit allows get through"""
        limit = SEED_CUSTOMER_LIMITS[0]
        value = limit // 8
        
        with ThreadPoolExecutor(max_workers=8) as pool:
            responses = list(pool.map(
                lambda i: post_transaction(client, 1, value, "d", f"p{i}"),
                range(20)
            ))
        
        statuses = sorted(r.status_code for r in responses)
        assert statuses.count(200) == 8
        assert statuses.count(422) == 12
        assert client.get("/customers/1/statement").json()["saldo"]["total"] == -value * 8


class TestValidation:
    """Malformed requests are rejected before reaching the ledger"""
    
    @pytest.mark.parametrize("body", [
        {"valor": 10, "tipo": "x", "descricao": "abc"},
        {"valor": 10, "tipo": "C", "descricao": "abc"},
        {"valor": 10, "tipo": "c", "descricao": ""},
        {"valor": 10, "tipo": "c", "descricao": "12345678901"},
        {"valor": 10, "tipo": "c", "descricao": None},
        {"valor": 10, "tipo": "c", "descricao": 123},
        {"valor": 1.5, "tipo": "c", "descricao": "abc"},
        {"valor": "10", "tipo": "c", "descricao": "abc"},
        {"valor": 0, "tipo": "d", "descricao": "abc"},
        {"valor": -5, "tipo": "d", "descricao": "abc"},
        {"valor": 2 ** 31, "tipo": "c", "descricao": "abc"},
        {"tipo": "c", "descricao": "abc"},
        {"valor": 10, "descricao": "abc"},
    ])
    def test_bad_request(self, client, body):
        r = client.post("/customers/1/transactions", json=body)
        assert r.status_code == 400
        
        # Nothing was recorded
        data = client.get("/customers/1/statement").json()
        assert data["saldo"]["total"] == 0
        assert data["ultimas_transacoes"] == []
    
    def test_malformed_json(self, client):
        r = client.post(
            "/customers/1/transactions",
            content=b"{not json",
            headers={"Content-Type": "application/json"}
        )
        assert r.status_code == 400
    
    def test_description_counts_characters(self, client):
        """Ten accented characters fit even though they take more bytes"""
        r = post_transaction(client, 1, 10, "c", "ação-ação!")
        assert r.status_code == 200
        
        data = client.get("/customers/1/statement").json()
        assert data["ultimas_transacoes"][0]["descricao"] == "ação-ação!"


class TestInjectedStore:
    
    def test_injected_store_is_not_closed(self):
        from account_ledger.storage import SQLiteStore
        
        store = SQLiteStore(":memory:")
        config = LedgerConfig(db_conn_str="unused://", seed_customers=True, log_level="WARNING")
        with TestClient(create_app(config, store=store)) as client:
            assert client.get("/customers/1/statement").status_code == 200
        
        # Still open after shutdown
        assert store._connection is not None
