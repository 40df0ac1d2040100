import pytest
from structlog.testing import capture_logs


@pytest.fixture
def site(tmp_path):
    root = tmp_path / 'site'
    root.mkdir()
    (root / 'hello.txt').write_text('hello file')
    (root / 'app.js').write_text('console.log(1)')
    (root / 'docs').mkdir()
    (root / 'docs' / 'guide.md').write_text('# guide')
    (root / 'blog').mkdir()
    (root / 'blog' / 'index.html').write_text('<h1>blog</h1>')
    (root / '.git').mkdir()
    (root / '.git' / 'config').write_text('[core] secret')
    (root / 'server.key').write_text('PRIVATE KEY')
    return root


async def test_literal_body(make_client, make_settings):
    client = await make_client(make_settings(body='just some text'))

    resp = await client.get('/anything/at/all')

    assert resp.status_code == 200
    assert resp.content == b'just some text'
    assert resp.headers['content-type'] == 'text/plain; charset=utf-8'


async def test_literal_body_uses_configured_status(make_client, make_settings):
    client = await make_client(make_settings(body='gone', status=410))

    resp = await client.post('/')

    assert resp.status_code == 410
    assert resp.content == b'gone'


async def test_repeated_requests_are_byte_identical(make_client, make_settings, tmp_path):
    page = tmp_path / 'page.html'
    page.write_bytes(b'<html><body>v1</body></html>')
    client = await make_client(make_settings(body=str(page)))

    first = await client.get('/')
    page.write_bytes(b'<html><body>v2</body></html>')
    second = await client.get('/')

    assert first.content == second.content == b'<html><body>v1</body></html>'
    assert first.headers['content-type'] == 'text/html; charset=utf-8'


async def test_single_file_content_type_override(make_client, make_settings, tmp_path):
    page = tmp_path / 'page.html'
    page.write_bytes(b'<html></html>')
    client = await make_client(make_settings(body=str(page), content_type='application/x-custom'))

    resp = await client.get('/')

    assert resp.headers['content-type'] == 'application/x-custom'


async def test_directory_serves_files(make_client, make_settings, site):
    client = await make_client(make_settings(body=str(site), deny='.git'))

    resp = await client.get('/hello.txt')

    assert resp.status_code == 200
    assert resp.text == 'hello file'
    assert resp.headers['content-type'].startswith('text/plain')


async def test_directory_missing_file_is_404(make_client, make_settings, site):
    client = await make_client(make_settings(body=str(site), deny='.git'))

    resp = await client.get('/missing.txt')

    assert resp.status_code == 404


@pytest.mark.parametrize('path', ['/.git/config', '/.git/', '/server.key'])
async def test_directory_denied_paths_are_forbidden(make_client, make_settings, site, path):
    client = await make_client(make_settings(body=str(site), deny='.git,*.key'))

    resp = await client.get(path)

    assert resp.status_code == 403
    assert 'secret' not in resp.text
    assert 'PRIVATE' not in resp.text


async def test_directory_listing_filters_denied_entries(make_client, make_settings, site):
    client = await make_client(make_settings(body=str(site), deny='.git,*.key'))

    resp = await client.get('/')

    assert resp.status_code == 200
    assert resp.headers['content-type'] == 'text/html; charset=utf-8'
    assert '<a href="hello.txt">hello.txt</a>' in resp.text
    assert '<a href="docs/">docs/</a>' in resp.text
    assert '.git' not in resp.text
    assert 'server.key' not in resp.text


async def test_directory_index_html(make_client, make_settings, site):
    client = await make_client(make_settings(body=str(site), deny='.git'))

    resp = await client.get('/blog/')

    assert resp.text == '<h1>blog</h1>'


async def test_directory_without_slash_redirects(make_client, make_settings, site):
    client = await make_client(make_settings(body=str(site), deny='.git'))

    resp = await client.get('/docs?x=1')

    assert resp.status_code == 301
    assert resp.headers['location'] == 'docs/?x=1'


async def test_directory_under_path_prefix(make_client, make_settings, site):
    client = await make_client(make_settings(body=str(site), path='/static/', deny='.git'))

    served = await client.get('/static/docs/guide.md')
    outside = await client.get('/docs/guide.md')

    assert served.status_code == 200
    assert served.text == '# guide'
    assert outside.status_code == 404


async def test_directory_serves_any_method_read_only(make_client, make_settings, site):
    client = await make_client(make_settings(body=str(site), deny='.git'))

    resp = await client.put('/hello.txt', content=b'overwrite')

    assert resp.status_code == 200
    assert resp.text == 'hello file'
    assert (site / 'hello.txt').read_text() == 'hello file'


async def test_directory_content_type_override(make_client, make_settings, site):
    client = await make_client(make_settings(body=str(site), deny='.git', content_type='text/x-forced'))

    resp = await client.get('/app.js')

    assert resp.headers['content-type'].startswith('text/x-forced')


async def test_serving_directory_without_deny_list_warns(make_client, make_settings, site):
    with capture_logs() as logs:
        client = await make_client(make_settings(body=str(site)))

    assert any(log['event'] == 'serving_without_filter' and log['log_level'] == 'warning' for log in logs)
    resp = await client.get('/.git/config')
    assert resp.status_code == 200
