from semantic_memory.triggers import BASE_DESCRIPTIONS, DEFAULT_TRIGGERS, GRAPH, LIST, SEARCH, STORE, build_description


class TestBuildDescription:
    def test_default_triggers(self):
        description = build_description(STORE)

        assert description.startswith(BASE_DESCRIPTIONS[STORE])
        assert description.endswith(f"Use when user says: {DEFAULT_TRIGGERS[STORE]}.")

    def test_custom_triggers_are_appended(self):
        description = build_description(SEARCH, " what do we know ,, look it up ")

        assert description.endswith(f"{DEFAULT_TRIGGERS[SEARCH]}, what do we know, look it up.")

    def test_blank_custom_triggers_are_ignored(self):
        assert build_description(GRAPH, " , ") == build_description(GRAPH)

    def test_every_tool_has_a_description(self):
        for tool in (STORE, SEARCH, GRAPH, LIST):
            assert "Use when user says:" in build_description(tool)
