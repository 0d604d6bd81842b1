"""表结构 AI 分析测试（注入假的 completion 函数，不调用真实模型）"""

import pytest

from portal.exceptions import LLMError
from portal.models import DataAgent, DataAgentEnvironment
from portal.schemas.table import TableSelection
from portal.services import table_analysis, table_import


@pytest.fixture
async def orders_table(db):
    agent = DataAgent(name="shop", connection_type="postgres", connection_config={})
    db.add(agent)
    await db.flush()
    environment = DataAgentEnvironment(data_agent_id=agent.id, name="production")
    db.add(environment)
    await db.commit()

    result = await table_import.import_tables(
        db,
        environment,
        [TableSelection(schema_name="public", table_name="orders", columns=["id", "amount"])],
    )
    return result.tables[0]


class TestAnalyzeTable:

    @pytest.mark.asyncio
    async def test_success_stores_summary_and_column_descriptions(self, db, orders_table):
        async def completion(**kwargs) -> str:
            assert "public.orders" in kwargs["prompt"]
            return '{"summary": "订单表", "columns": {"amount": "订单金额"}}'

        table = await table_analysis.analyze_table(db, orders_table.id, completion=completion)

        assert table.analysis_status == "COMPLETED"
        assert table.analysis_result["summary"] == "订单表"
        assert table.analyzed_at is not None
        descriptions = {c.column_name: c.ai_description for c in table.columns}
        assert descriptions == {"id": None, "amount": "订单金额"}

    @pytest.mark.asyncio
    async def test_failure_is_recorded(self, db, orders_table):
        async def completion(**kwargs) -> str:
            raise LLMError("model unavailable")

        table = await table_analysis.analyze_table(db, orders_table.id, completion=completion)

        assert table.analysis_status == "FAILED"
        assert table.analysis_result == {"error": "model unavailable"}

    @pytest.mark.asyncio
    async def test_invalid_json_is_a_failure(self, db, orders_table):
        async def completion(**kwargs) -> str:
            return "sorry, I cannot help"

        table = await table_analysis.analyze_table(db, orders_table.id, completion=completion)
        assert table.analysis_status == "FAILED"
