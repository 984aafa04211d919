"""
Shared pytest fixtures for backsync tests.

This module provides fixtures for:
- Flask app and CLI runner
- Mock fixtures for external services (S3, Dropbox, producer)
- Temporary file fixtures
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws

from backsync import create_app
from backsync.backup.gateway import EntryKind, RemoteEntry


@pytest.fixture(scope='function')
def app(tmp_path, temp_files):
    """
    Create Flask app with test configuration.

    Logs and local backups go to the pytest temporary directory.
    """
    app = create_app('testing', overrides={
        'LOG_DIR': str(tmp_path / 'logs'),
        'LOCAL_BACKUP_DIR': str(tmp_path / 'local_backups'),
        'BACKUP_SOURCE_PATHS': (str(temp_files),),
        'BACKUP_NAME': 'site',
        'UPLOAD_FOLDER': '/backups',
    })

    yield app


@pytest.fixture(scope='function')
def runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake AWS credentials so nothing can reach a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def mock_s3(aws_credentials):
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')

        yield s3


@pytest.fixture
def mock_dropbox_client():
    """MagicMock standing in for dropbox.Dropbox."""
    return MagicMock()


@pytest.fixture
def mock_producer(tmp_path):
    """
    Backup producer double whose create() returns a real file.
    """
    artifact = tmp_path / 'backup-2024.tar'
    artifact.write_bytes(b'backup data' * 100)

    producer = MagicMock()
    producer.create.return_value = str(artifact)
    return producer


@pytest.fixture
def mock_gateway():
    """Remote storage gateway double."""
    gateway = MagicMock()
    gateway.upload.side_effect = lambda path, stream: RemoteEntry(
        path=path,
        name=path.rsplit('/', 1)[-1],
        kind=EntryKind.FILE,
        modified_at=datetime.now(timezone.utc)
    )
    gateway.list_entries.return_value = []
    return gateway


@pytest.fixture
def temp_files(tmp_path):
    """
    Create temporary test files and directories.

    Creates:
    - data/test_file1.txt
    - data/test_file2.log
    - data/nested/test_file3.txt
    - data/test_file.pyc (should be excluded in tests)
    """
    data_dir = tmp_path / 'data'
    data_dir.mkdir()

    (data_dir / 'test_file1.txt').write_text('Test content 1')
    (data_dir / 'test_file2.log').write_text('Test log content')

    nested_dir = data_dir / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')

    (data_dir / 'test_file.pyc').write_bytes(b'compiled python')

    return data_dir
