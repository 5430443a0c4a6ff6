from __future__ import annotations

from threading import Event
from typing import TYPE_CHECKING, Any

import pytest

from anteater_mq import actions
from anteater_mq.actions import Attributes, Variables, connection_parameters, execute, register
from anteater_mq.exceptions import BrokerError, ConfigurationError, UnknownActionError
from anteater_mq.message import Message

from tests.helpers import ANY, FakeRunner, FakeSession

if TYPE_CHECKING:  # pragma: no cover
    from pytest_mock import MockerFixture


CONNECTION = {
    'queue': 'DEV.QUEUE.1',
    'host': 'mq.example.com',
    'port': '1414',
    'manager': 'QM1',
    'channel': 'DEV.APP.SVRCONN',
}


def attributes(**kwargs: Any) -> dict[str, Any]:
    values: dict[str, Any] = dict(CONNECTION)
    values.update(kwargs)

    return values


class TestVariables:
    def test_variable_store(self) -> None:
        variables = Variables(foo='bar', number=1)

        assert variables.get_variable_value('foo') == 'bar'
        assert variables.get_variable_value('bar') is None
        assert variables.get_variable_string('number') == '1'
        assert variables.get_variable_string('bar') is None

        variables.set_variable_value('bar', None)
        assert 'bar' in variables
        assert variables.get_variable_value('bar') is None


class TestAttributes:
    def test_get(self) -> None:
        variables = Variables(queue_name='DEV.QUEUE.2')
        attrs = Attributes({'queue': '{{ queue_name }}', 'host': 'mq.example.com', 'port': 1414, 'missing': '{{ foo }}'}, variables)

        assert attrs.get('queue') == 'DEV.QUEUE.2'
        assert attrs.get('host') == 'mq.example.com'
        assert attrs.get('port') == '1414'
        assert attrs.get('channel') is None
        assert attrs.get('channel', 'default') == 'default'
        assert attrs.get('missing') == '{{ foo }}'

    def test_require(self) -> None:
        attrs = Attributes({'queue': 'DEV.QUEUE.1', 'host': ' '}, Variables())

        assert attrs.require('queue') == 'DEV.QUEUE.1'

        with pytest.raises(ConfigurationError, match='attribute "host" is required'):
            attrs.require('host')

        with pytest.raises(ConfigurationError, match='attribute "channel" is required'):
            attrs.require('channel')

    def test_get_int(self) -> None:
        attrs = Attributes({'port': '1414', 'heartbeat': 'often'}, Variables())

        assert attrs.get_int('port') == 1414
        assert attrs.get_int('transportType') is None
        assert attrs.get_int('transportType', 1) == 1

        with pytest.raises(ConfigurationError, match='attribute "heartbeat" is not an integer: "often"'):
            attrs.get_int('heartbeat')

    def test_get_duration(self) -> None:
        attrs = Attributes({'timeout': '5s', 'other': 'soon'}, Variables())

        assert attrs.get_duration('timeout') == 5000
        assert attrs.get_duration('missing') == 0
        assert attrs.get_duration('missing', 100) == 100

        with pytest.raises(ConfigurationError, match='attribute "other" is not a duration: "soon"'):
            attrs.get_duration('other')

    def test_get_value(self) -> None:
        variables = Variables(payload=['a', 'b'], greeting='hello')
        attrs = Attributes({'name': 'payload', 'literal': 'hello {{ greeting }}', 'list': ['a', '{{ greeting }}'], 'number': 1}, variables)

        assert attrs.get_value('name') == ['a', 'b']
        assert attrs.get_value('literal') == 'hello hello'
        assert attrs.get_value('list') == ['a', 'hello']
        assert attrs.get_value('number') == 1
        assert attrs.get_value('missing') is None

    def test_attribute_map(self) -> None:
        variables = Variables(connection={'queue': 'MAPPED.QUEUE', 'host': 'mapped.example.com', 'port': 1415}, name='connection')

        attrs = Attributes({'attr-map': 'connection', 'queue': 'EXPLICIT.QUEUE'}, variables)
        assert attrs.get('queue') == 'EXPLICIT.QUEUE'
        assert attrs.get('host') == 'mapped.example.com'
        assert attrs.get_int('port') == 1415
        assert attrs.get('attr-map') is None

        attrs = Attributes({'attr-map': '{{ name }}'}, variables)
        assert attrs.get('queue') == 'MAPPED.QUEUE'

        with pytest.raises(ConfigurationError, match='attr-map "name" is not a variable with a mapping of attributes'):
            Attributes({'attr-map': 'name'}, variables)

        with pytest.raises(ConfigurationError, match='attr-map "foo" is not a variable with a mapping of attributes'):
            Attributes({'attr-map': 'foo'}, variables)

    def test___repr__(self) -> None:
        attrs = Attributes({'user': 'app', 'password': 'secret'}, Variables())

        assert 'secret' not in repr(attrs)
        assert repr(attrs) == "Attributes({'user': 'app', 'password': '***'})"


def test_connection_parameters(mocker: MockerFixture) -> None:
    mocker.patch.dict('os.environ', {'USER': 'os-user'}, clear=False)

    variables = Variables(USER_NAME='bob')
    parameters = connection_parameters(Attributes(attributes(user='app', password='secret', cipherSuite='TLS_RSA_WITH_AES_128_CBC_SHA256', keyFile='/tmp/key', certLabel='app'), variables), variables)

    assert parameters.host == 'mq.example.com'
    assert parameters.port == 1414
    assert parameters.queue_manager == 'QM1'
    assert parameters.channel == 'DEV.APP.SVRCONN'
    assert parameters.queue_name == 'DEV.QUEUE.1'
    assert parameters.user == 'app'
    assert parameters.password == 'secret'  # noqa: S105
    assert parameters.cipher_suite == 'TLS_RSA_WITH_AES_128_CBC_SHA256'
    assert parameters.key_file == '/tmp/key'  # noqa: S108
    assert parameters.cert_label == 'app'
    assert parameters.transport_type == 1
    assert parameters.target_client is None
    assert parameters.heartbeat_interval == 300
    assert parameters.application_id == 'Anteater(bob)'

    variables = Variables()
    parameters = connection_parameters(Attributes(attributes(transportType='0', targetClient='1', heartbeat='0'), variables), variables)

    assert parameters.transport_type == 0
    assert parameters.target_client == 1
    assert parameters.heartbeat_interval == 0
    assert parameters.application_id == 'Anteater(os-user)'

    parameters = connection_parameters(Attributes(attributes(appId='my-app'), variables), variables)
    assert parameters.application_id == 'my-app'

    for name in CONNECTION:
        values = attributes()
        del values[name]

        with pytest.raises(ConfigurationError, match='is required'):
            connection_parameters(Attributes(values, variables), variables)

    with pytest.raises(ConfigurationError, match='attribute "port" is not an integer: "abc"'):
        connection_parameters(Attributes(attributes(port='abc'), variables), variables)


def test_register(mocker: MockerFixture) -> None:
    mocker.patch.dict(actions.handlers, clear=False)

    @register(actions.handlers, 'SendMessage', 'Custom')
    def custom(context: actions.ActionContext) -> None:
        pass

    assert actions.handlers['SendMessage'] is actions.send_message
    assert actions.handlers['Custom'] is custom


class TestExecute:
    def test_unknown_action(self) -> None:
        with pytest.raises(UnknownActionError, match='no implementation for PublishMessage'):
            execute('PublishMessage', attributes(name='foo'), Variables(), runner=FakeRunner())

    def test_send_message(self) -> None:
        runner = FakeRunner()
        variables = Variables(payload=['a', 'b', 'c'])

        execute('SendMessage', attributes(name='payload'), variables, runner=runner)

        assert [message.get_text() for message in runner.session.sent] == ['a', 'b', 'c']
        assert all(message.persistent for message in runner.session.sent)
        assert variables == {'payload': ['a', 'b', 'c']}

        execute('send', attributes(name='hello world'), variables, runner=runner)
        assert runner.session.sent[-1].get_text() == 'hello world'

    def test_send_message_invalid_payload(self) -> None:
        runner = FakeRunner()

        with pytest.raises(ConfigurationError, match='payload must be a string or a sequence of strings'):
            execute('SendMessage', attributes(name='payload'), Variables(payload=10), runner=runner)

        with pytest.raises(ConfigurationError, match='attribute "name" is required'):
            execute('SendMessage', attributes(), Variables(), runner=runner)

        # never connected
        assert runner.parameters == []

    def test_receive_message(self) -> None:
        runner = FakeRunner(FakeSession([Message.map({'k1': 'v1', 'k2': 2})]))
        variables = Variables()

        execute('ReceiveMessage', attributes(name='response', type='map', timeout='1s'), variables, runner=runner)

        assert variables == {'response': {'k1': 'v1', 'k2': 2}}

        execute('receive', attributes(name='response', timeout='250'), variables, runner=runner)

        assert variables == {'response': None}
        assert runner.session.slices == [100, 100, 100]

    def test_receive_message_cancel(self) -> None:
        runner = FakeRunner()
        variables = Variables(response='stale')
        cancel = Event()

        def on_slice(slices: int) -> None:
            if slices == 2:
                cancel.set()

        runner.session.on_slice = on_slice

        execute('ReceiveMessage', attributes(name='response'), variables, cancel, runner=runner)

        assert variables == {'response': None}
        assert runner.session.slices == [100, 100]

    def test_browse_messages(self) -> None:
        runner = FakeRunner(FakeSession([Message.text('a'), Message.text('b')]))
        variables = Variables()

        execute('BrowseMessages', attributes(name='messages'), variables, runner=runner)
        assert variables == {'messages': ['a', 'b']}

        runner = FakeRunner()
        execute('browse', attributes(name='messages'), variables, runner=runner)
        assert variables == {'messages': None}

    def test_mq_size(self) -> None:
        runner = FakeRunner(FakeSession([Message.text('a'), Message.text('b')]))
        variables = Variables()

        execute('MQSize', attributes(name='depth'), variables, runner=runner)
        assert variables == {'depth': 2}

        execute('SendMessage', attributes(name='c'), variables, runner=runner)
        execute('count', attributes(name='depth'), variables, runner=runner)
        assert variables == {'depth': 3}

    def test_attribute_map(self) -> None:
        runner = FakeRunner(FakeSession([Message.text('a')]))
        variables = Variables(connection=dict(CONNECTION), queue_name='OTHER.QUEUE')

        execute('MQSize', {'name': 'depth', 'attr-map': 'connection', 'queue': '{{ queue_name }}'}, variables, runner=runner)

        assert variables['depth'] == 1
        assert runner.parameters[0].queue_name == 'OTHER.QUEUE'
        assert runner.parameters[0].host == 'mq.example.com'

    def test_broker_error(self, mocker: MockerFixture, caplog: pytest.LogCaptureFixture) -> None:
        runner = mocker.MagicMock(side_effect=BrokerError('failed to connect', comp=2, reason=2059))
        variables = Variables()

        with pytest.raises(BrokerError, match='failed to connect') as e:
            execute('MQSize', attributes(name='depth'), variables, runner=runner)

        assert e.value.reason == 2059
        assert variables == {}
        assert 'MQSize: BrokerError="failed to connect"' in caplog.text
        runner.assert_called_once_with(ANY(actions.ConnectionParameters), ANY())
