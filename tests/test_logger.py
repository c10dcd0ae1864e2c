# -*- coding: utf-8 -*-
"""
按消息键记录日志的测试
"""

import logging

import pytest

from pyscriptengine.logger import (
    DEFAULT_LANGUAGE,
    KeyedLogger,
    MessageCatalog,
    get_message_catalog,
    reset_message_catalog,
)


@pytest.fixture
def catalog():
    table = MessageCatalog()
    table.append_language("zh_CN", {"demo": {"hello": "你好 {0}", "bye": "再见"}})
    table.append_language("en_US", {"demo.hello": "hello {0}"})
    return table


class TestMessageCatalog:
    """测试消息表"""

    def test_nested_keys_are_flattened(self, catalog):
        assert catalog.translate("demo.hello", ["alpha"]) == "你好 alpha"

    def test_language_switch_with_fallback(self, catalog):
        catalog.set_language("en_US")

        assert catalog.translate("demo.hello", ["alpha"]) == "hello alpha"
        # en_US 没有的键回退到默认语言
        assert catalog.translate("demo.bye") == "再见"

    def test_unknown_key_returns_key_and_args(self, catalog):
        assert catalog.translate("demo.missing") == "demo.missing"
        assert catalog.translate("demo.missing", ["a", 1]) == "demo.missing ['a', 1]"

    def test_bad_template_args(self, catalog):
        assert catalog.translate("demo.hello") == "你好 {0} []"

    def test_load_file(self, tmp_path):
        path = tmp_path / "fr_FR.yaml"
        path.write_text('demo.hello: "bonjour {0}"\n', encoding="utf-8")
        table = MessageCatalog("fr_FR")

        table.load_file(path)

        assert "fr_FR" in table.languages()
        assert table.translate("demo.hello", ["alpha"]) == "bonjour alpha"


class TestBuiltinLanguages:
    """测试内置语言文件"""

    def test_builtin_catalog_has_engine_keys(self):
        reset_message_catalog()
        table = get_message_catalog()

        assert table.language == DEFAULT_LANGUAGE
        assert set(table.languages()) >= {"zh_CN", "en_US"}
        assert table.translate("engine.python.plugin.loading", ["alpha"]) == "正在加载插件 alpha"

    def test_languages_share_keys(self):
        """每种内置语言都提供同一组键"""
        table = get_message_catalog()
        keys = {lang: set(table._languages[lang]) for lang in ("zh_CN", "en_US")}

        assert keys["zh_CN"] == keys["en_US"]

    def test_english_messages(self):
        table = get_message_catalog()
        table.set_language("en_US")

        assert (
            table.translate("engine.python.plugin.unload.restoreFailed", ["a", "b.bak", "e"])
            == "Failed to restore the entry file of plugin a, recover it manually from b.bak: e"
        )


class TestKeyedLogger:
    """测试记录器"""

    def test_messages_are_translated(self, catalog, caplog):
        logger = KeyedLogger("pyscriptengine.test", catalog)

        with caplog.at_level(logging.INFO, logger="pyscriptengine.test"):
            logger.info("demo.hello", ["alpha"])
            logger.critical("demo.bye")

        assert [r.getMessage() for r in caplog.records] == ["你好 alpha", "再见"]
        assert caplog.records[1].levelno == logging.CRITICAL

    def test_disabled_level_is_skipped(self, catalog, caplog, mocker):
        logger = KeyedLogger("pyscriptengine.quiet", catalog)
        translate = mocker.spy(catalog, "translate")

        with caplog.at_level(logging.WARNING, logger="pyscriptengine.quiet"):
            logger.debug("demo.hello", ["alpha"])

        translate.assert_not_called()
        assert caplog.records == []

    def test_error_with_traceback(self, catalog, caplog):
        logger = KeyedLogger("pyscriptengine.test", catalog)

        with caplog.at_level(logging.ERROR, logger="pyscriptengine.test"):
            try:
                raise ValueError("bad")
            except ValueError:
                logger.error("demo.bye", exc_info=True)

        assert caplog.records[0].exc_info is not None
        assert logger.logger.name == "pyscriptengine.test"
