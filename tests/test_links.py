from gsl.links import AuthLinkScanner, find_auth_urls


def test_find_auth_urls():
    line = 'Visit "https://accounts.example.com/device?code=ABCD" to authorise, docs at https://example.com/docs'
    assert find_auth_urls(line) == ["https://accounts.example.com/device?code=ABCD"]
    assert find_auth_urls("nothing to see") == []
    assert find_auth_urls("http://login.example.com insecure") == []


def test_each_url_opened_once_per_run():
    opened = []
    scanner = AuthLinkScanner(opened.append)

    assert scanner.scan("Go to https://oauth.example.com/x") == ["https://oauth.example.com/x"]
    assert scanner.scan("Still waiting: https://oauth.example.com/x") == []
    scanner.scan("<https://login.example.com/verify>")

    assert opened == ["https://oauth.example.com/x", "https://login.example.com/verify"]
    assert scanner.opened == set(opened)


def test_handler_failure_does_not_propagate():
    def boom(url):
        raise OSError("no browser")

    scanner = AuthLinkScanner(boom)
    assert scanner.scan("https://auth.example.com/a") == ["https://auth.example.com/a"]
