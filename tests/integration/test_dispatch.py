async def test_longest_proxy_prefix_wins(make_client, make_settings):
    client = await make_client(make_settings(
        proxy='/api=>http://upstream/v1,/api/v2=>http://upstream/v2',
    ))

    v2 = await client.get('/api/v2/x')
    v1 = await client.get('/api/other')

    assert v2.json()['path'] == '/v2/x'
    assert v1.json()['path'] == '/v1/other'


async def test_longest_prefix_wins_in_either_order(make_client, make_settings):
    client = await make_client(make_settings(
        proxy='/api/v2=>http://upstream/v2,/api=>http://upstream/v1',
    ))

    resp = await client.get('/api/v2/x')

    assert resp.json()['path'] == '/v2/x'


async def test_proxy_prefix_beats_content_route(make_client, make_settings, tmp_path):
    client = await make_client(make_settings(body=str(tmp_path), deny='.git', proxy='/api=>http://upstream'))

    resp = await client.get('/api/x')

    assert resp.json()['path'] == '/x'


async def test_mock_route_beats_content_route(make_client, make_settings, tmp_path):
    (tmp_path / 'mocks' / 'ping').mkdir(parents=True)
    (tmp_path / 'mocks' / 'ping' / 'GET.txt').write_text('pong')
    client = await make_client(make_settings(mock=str(tmp_path / 'mocks')))

    assert (await client.get('/ping')).text == 'pong'
    assert (await client.get('/')).text == 'hello from spark'


async def test_route_table_registration(make_client, make_settings, tmp_path):
    (tmp_path / 'mocks' / 'ping').mkdir(parents=True)
    (tmp_path / 'mocks' / 'ping' / 'GET').write_text('pong')
    client = await make_client(make_settings(
        mock=str(tmp_path / 'mocks'),
        path='/site',
        proxy='/api=>http://upstream,bad=>http://nowhere',
    ))

    routes = client._transport.app.state.routes

    assert sorted(routes.prefixes) == ['/api', '/echo', '/ping', '/site']
