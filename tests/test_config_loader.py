import json

from config_loader import CONFIG_ENV_VAR, DEFAULT_CONFIG, load_config


def test_missing_file_returns_defaults(tmp_path):
    config = load_config(tmp_path / 'absent.json')
    assert config == DEFAULT_CONFIG
    config['spot_prices']['TTF'] = 0
    assert DEFAULT_CONFIG['spot_prices']['TTF'] == 12.00


def test_file_overrides_are_merged(tmp_path):
    path = tmp_path / 'desk.json'
    path.write_text(json.dumps({
        'spot_prices': {'TTF': 13.25, 'NEW': 1, 'BAD': 'abc'},
        'log_level': 'DEBUG',
    }), encoding='utf-8')

    config = load_config(path)
    assert config['spot_prices']['TTF'] == 13.25
    assert config['spot_prices']['NEW'] == 1.0
    assert 'BAD' not in config['spot_prices']
    assert config['spot_prices']['HH'] == DEFAULT_CONFIG['spot_prices']['HH']
    assert config['log_level'] == 'DEBUG'


def test_env_var_points_at_config(tmp_path, monkeypatch):
    path = tmp_path / 'env.json'
    path.write_text(json.dumps({'storage_dir': str(tmp_path / 'data')}), encoding='utf-8')
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
    assert load_config()['storage_dir'] == str(tmp_path / 'data')


def test_unreadable_file_falls_back(tmp_path, caplog):
    path = tmp_path / 'broken.json'
    path.write_text('{', encoding='utf-8')
    assert load_config(path) == DEFAULT_CONFIG
    assert 'Failed to load' in caplog.text


def test_non_object_file_falls_back(tmp_path):
    path = tmp_path / 'list.json'
    path.write_text('[1, 2]', encoding='utf-8')
    assert load_config(path) == DEFAULT_CONFIG
