import json

from gsl.templates import GameTemplate, TemplateCatalog, TemplateVariable, build_env_vars, resolve_startup


def test_env_vars_map_ram_port_and_overrides():
    t = GameTemplate(
        game_type="x",
        docker_image="img",
        variables=[
            TemplateVariable(env="MEMORY", default="1G", system_mapping="ram"),
            TemplateVariable(env="HEAP", default="1024M", system_mapping="ram"),
            TemplateVariable(env="PORT", system_mapping="port"),
            TemplateVariable(env="MOTD", default="hello"),
            TemplateVariable(env="DIFFICULTY", default="easy"),
        ],
    )
    env = build_env_vars(t, 6144, 27015, {"DIFFICULTY": "hard", "UNUSED": "x"})
    assert env == {"MEMORY": "6G", "HEAP": "6144M", "PORT": "27015", "MOTD": "hello", "DIFFICULTY": "hard"}


def test_resolve_startup():
    assert resolve_startup("", {"A": "1"}) is None
    assert resolve_startup("run --mem {{MEM}} {{MISSING}}", {"MEM": "2G"}) == "run --mem 2G {{MISSING}}"


def test_catalog_load(tmp_path):
    assert TemplateCatalog.load(str(tmp_path / "missing.json")).all() == []

    path = tmp_path / "games.json"
    path.write_text(json.dumps([{"game_type": "valheim", "name": "Valheim", "docker_image": "lloesche/valheim-server"}]))
    catalog = TemplateCatalog.load(str(path))
    t = catalog.get("valheim")
    assert t.install_target_image == "lloesche/valheim-server"
    assert t.has_install_script is False
    assert catalog.get("nope") is None
