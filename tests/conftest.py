import pytest


ORIGINAL_BUNDLE = (
    '#!/usr/bin/env node\n'
    'var a=1;function Z1(){return!!process.execArgv.length}'
    'if(Z1())process.exit(1);'
    'function cost(s){if(s.plan)return console.log("no need to monitor cost"),!1;return!0}'
    'module.exports={a};\n'
)

PATCHED_BUNDLE = (
    '#!/usr/bin/env node\n'
    'var a=1;function Z1(){return!!process.execArgv.length}'
    'if(false)process.exit(1);'
    'function cost(s){if(s.plan);return!0}'
    'module.exports={a};\n'
)


@pytest.fixture
def original_bundle():
    return ORIGINAL_BUNDLE


@pytest.fixture
def patched_bundle():
    return PATCHED_BUNDLE


@pytest.fixture
def bundle_file(tmp_path):
    path = tmp_path / "cli.js"
    path.write_text(ORIGINAL_BUNDLE, encoding="utf-8")
    return path
