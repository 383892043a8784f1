"""End-to-end tests of the built-in command handlers through the executor."""
import pytest

from bridges.base import BridgeResponse, CmdlineResult
from bridges.local import LocalFileBridge
from macros.results import ErrorCode

from conftest import RecordingBridge, RecordingCmdline


@pytest.mark.asyncio
async def test_click_uses_expanded_coordinates(make_executor, content):
    result = await make_executor('SET !VAR1 3\nCLICK X={{!VAR1}} Y=10').execute()

    assert result.success
    clicks = content.of_type('CLICK_COMMAND')
    assert len(clicks) == 1
    payload = clicks[0]['payload']
    assert (payload['x'], payload['y']) == (3, 10)
    assert payload['button'] == 'left'
    assert payload['clickCount'] == 1
    assert payload['coordinateMode'] == 'viewport'
    assert 'id' in clicks[0] and 'timestamp' in clicks[0]


@pytest.mark.asyncio
async def test_click_validates_parameters(make_executor, content):
    missing = await make_executor('CLICK X=1').execute()
    bad_button = await make_executor('CLICK X=1 Y=2 BUTTON=side').execute()

    assert missing.error_code == ErrorCode.MISSING_PARAMETER
    assert bad_button.error_code == ErrorCode.INVALID_PARAMETER
    assert content.messages == []


@pytest.mark.asyncio
async def test_filedelete_without_name_never_calls_bridge(make_executor, files):
    result = await make_executor('FILEDELETE').execute()

    assert result.error_code == ErrorCode.MISSING_PARAMETER
    assert files.messages == []


@pytest.mark.asyncio
async def test_filedelete_maps_bridge_errors(make_executor, bridges):
    bridges.files = RecordingBridge(default=BridgeResponse.fail('File not found: gone.txt'))

    result = await make_executor('FILEDELETE NAME=gone.txt').execute()

    assert result.error_code == ErrorCode.FILE_NOT_FOUND
    assert bridges.files.messages[0]['path'] == 'gone.txt'


@pytest.mark.asyncio
async def test_filedelete_and_saveas_on_disk(make_executor, bridges, tmp_path):
    bridges.files = LocalFileBridge(tmp_path)
    (tmp_path / 'old.txt').write_text('x')

    result = await make_executor(
        'FILEDELETE NAME=old.txt\n'
        'EXTRACT "a,b"\n'
        'EXTRACT c\n'
        'SAVEAS TYPE=EXTRACT FOLDER=out FILE=data\n'
        'EXTRACT d\n'
        'SAVEAS TYPE=EXTRACT FOLDER=out FILE=data'
    ).execute()

    assert result.success
    assert not (tmp_path / 'old.txt').exists()
    assert (tmp_path / 'out' / 'data.csv').read_text() == '"a,b","c"\n"d"\n'
    assert result.extract_data == []


@pytest.mark.asyncio
async def test_saveas_rejects_other_types(make_executor):
    result = await make_executor('SAVEAS TYPE=HTM FILE=page').execute()

    assert result.error_code == ErrorCode.UNSUPPORTED_COMMAND


@pytest.mark.asyncio
async def test_search_extracts_from_page_source(make_executor, bridges):
    bridges.content = RecordingBridge(default=BridgeResponse.ok({'source': '<b>Price: $42.99</b>'}))

    result = await make_executor(r'SEARCH SOURCE=REGEXP:\$(\d+\.\d+) EXTRACT=USD$1').execute()

    assert result.success
    assert result.extract_data == ['USD42.99']
    assert bridges.content.messages[0]['type'] == 'GET_SOURCE'


@pytest.mark.asyncio
async def test_search_text_without_content_script_searches_current_url(make_executor, bridges):
    bridges.content = None

    result = await make_executor(
        'URL GOTO=https://example.com/item/17\nSEARCH SOURCE=TXT:item/*7'
    ).execute()

    assert result.success
    assert result.extract_data == ['item/17']


@pytest.mark.asyncio
async def test_search_quoted_text_with_spaces(make_executor, bridges):
    bridges.content = RecordingBridge(default=BridgeResponse.ok({'source': '<p>Hello   World</p>'}))

    result = await make_executor('SEARCH SOURCE=TXT:"Hello World"').execute()

    assert result.success
    assert result.extract_data == ['Hello   World']


@pytest.mark.asyncio
async def test_search_rejects_bad_sources(make_executor):
    bad_prefix = await make_executor('SEARCH SOURCE=XPATH://div').execute()
    bad_regexp = await make_executor('SEARCH SOURCE=REGEXP:[oops').execute()
    txt_extract = await make_executor('SEARCH SOURCE=TXT:a EXTRACT=$1').execute()

    assert bad_prefix.error_code == ErrorCode.INVALID_PARAMETER
    assert bad_regexp.error_code == ErrorCode.INVALID_PARAMETER
    assert txt_extract.error_code == ErrorCode.INVALID_PARAMETER


@pytest.mark.asyncio
async def test_url_goto_and_current(make_executor, browser):
    browser.default = BridgeResponse.ok({'url': 'https://example.com/landed'})

    result = await make_executor('URL GOTO=https://example.com\nURL CURRENT').execute()

    assert result.success
    assert browser.messages[0]['type'] == 'navigate'
    assert browser.messages[0]['url'] == 'https://example.com'
    assert result.variables['!URLCURRENT'] == 'https://example.com/landed'


@pytest.mark.asyncio
async def test_tab_commands(make_executor, browser):
    result = await make_executor('TAB T=2\nTAB OPEN URL=https://example.com\nTAB CLOSEALLOTHERS').execute()

    assert result.success
    assert [m['type'] for m in browser.messages] == ['switchTab', 'openTab', 'closeOtherTabs']
    assert browser.messages[0]['tabIndex'] == 1
    assert browser.messages[1]['url'] == 'https://example.com'


@pytest.mark.asyncio
async def test_main_frame_is_selected_without_retry(make_executor, browser):
    browser.default = BridgeResponse.fail('detached')

    result = await make_executor('FRAME F=0').execute()

    assert result.error_code == ErrorCode.FRAME_NOT_FOUND
    assert len(browser.messages) == 1


@pytest.mark.asyncio
async def test_set_eval_and_add(make_executor):
    result = await make_executor(
        'SET !VAR1 EVAL("(2 + 3) * 4")\n'
        'ADD !VAR1 5\n'
        'SET !VAR2 abc\n'
        'ADD !VAR2 def\n'
        'SET !VAR3 NULL'
    ).execute()

    assert result.success
    assert result.variables['!VAR1'] == '25'
    assert result.variables['!VAR2'] == 'abcdef'
    assert result.variables['!VAR3'] == ''


@pytest.mark.asyncio
@pytest.mark.parametrize('expression', ['9**9**9', '1e308 * 10', '7 // 2'])
async def test_set_eval_rejects_powers_and_overflow(make_executor, expression):
    result = await make_executor(f'SET !VAR1 EVAL("{expression}")').execute()

    assert result.error_code == ErrorCode.SCRIPT_ERROR
    assert result.variables['!VAR1'] == ''


@pytest.mark.asyncio
async def test_set_rejects_read_only_and_bad_timeouts(make_executor):
    read_only = await make_executor('SET !URLCURRENT x').execute()
    bad_timeout = await make_executor('SET !TIMEOUT -1').execute()

    assert read_only.error_code == ErrorCode.INVALID_PARAMETER
    assert bad_timeout.error_code == ErrorCode.INVALID_PARAMETER


@pytest.mark.asyncio
async def test_set_extract_appends_and_null_clears(make_executor):
    result = await make_executor('SET !EXTRACT one\nSET !EXTRACT NULL\nSET !EXTRACT two').execute()

    assert result.extract_data == ['two']


@pytest.mark.asyncio
async def test_wait_uses_injected_sleep(make_executor, clock):
    result = await make_executor('WAIT SECONDS=2.5').execute()

    assert result.success
    assert clock.now == pytest.approx(2.5)


@pytest.mark.asyncio
async def test_stopwatch_records_elapsed_time(make_executor, clock):
    result = await make_executor('STOPWATCH ID=total\nWAIT SECONDS=1.5\nSTOPWATCH ID=total').execute()

    assert result.success
    assert result.variables['!STOPWATCHTIME'] == '1.500'


@pytest.mark.asyncio
async def test_exec_sets_cmdline_variables(make_executor, cmdline):
    result = await make_executor('EXEC CMD="echo {{!LOOP}}" TIMEOUT=5').execute()

    assert result.success
    assert cmdline.calls == [{'command': 'echo 1', 'timeout': 5.0, 'wait': True}]
    assert result.variables['!CMDLINE_EXITCODE'] == 0
    assert result.variables['!CMDLINE_STDOUT'] == 'ok'


@pytest.mark.asyncio
async def test_exec_nonzero_exit_fails(make_executor, bridges):
    bridges.cmdline = RecordingCmdline(CmdlineResult(3, '', 'bad'))

    result = await make_executor('EXEC CMD=false').execute()

    assert result.error_code == ErrorCode.SCRIPT_ERROR
    assert result.variables['!CMDLINE_STDERR'] == 'bad'


@pytest.mark.asyncio
async def test_cmdline_only_sets_allowed_variables(make_executor):
    ok = await make_executor('CMDLINE !VAR3 hello').execute()
    refused = await make_executor('CMDLINE !URLCURRENT x').execute()

    assert ok.variables['!VAR3'] == 'hello'
    assert refused.error_code == ErrorCode.INVALID_PARAMETER


@pytest.mark.asyncio
async def test_datasource_columns_follow_the_current_line(make_executor, bridges):
    bridges.files = RecordingBridge(default=BridgeResponse.ok({'content': 'a,b\n\n"c, d",e\n'}))

    result = await make_executor(
        'SET !FOLDER_DATASOURCE data\n'
        'SET !DATASOURCE people.csv\n'
        'EXTRACT {{!COL1}}-{{!COL2}}\n'
        'SET !DATASOURCE_LINE 2\n'
        'EXTRACT {{!COL1}}-{{!COL2}}-{{!COL3}}'
    ).execute()

    assert result.success
    assert result.extract_data == ['a-b', 'c, d-e-']
    assert result.variables['!DATASOURCE_COLUMNS'] == 2
    read = bridges.files.messages[0]
    assert (read['type'], read['path']) == ('fileRead', 'data/people.csv')


@pytest.mark.asyncio
async def test_datasource_line_per_loop_from_disk(make_executor, bridges, tmp_path):
    bridges.files = LocalFileBridge(tmp_path)
    (tmp_path / 'rows.csv').write_text('first,1\nsecond,2\n')

    result = await make_executor(
        'CMDLINE !DATASOURCE rows.csv\n'
        'SET !DATASOURCE_LINE {{!LOOP}}\n'
        'EXTRACT {{!COL1}}={{!COL2}}'
    ).execute(1, 2)

    assert result.success
    assert result.extract_data == ['first=1', 'second=2']


@pytest.mark.asyncio
async def test_datasource_errors(make_executor, bridges):
    bridges.files = RecordingBridge(default=BridgeResponse.fail('File not found: gone.csv'))
    missing = await make_executor('SET !DATASOURCE gone.csv').execute()

    bridges.files = RecordingBridge(default=BridgeResponse.ok({'content': 'only,row\n'}))
    past_end = await make_executor('SET !DATASOURCE one.csv\nSET !DATASOURCE_LINE 2').execute()
    read_only = await make_executor('SET !DATASOURCE one.csv\nSET !COL1 x').execute()

    assert missing.error_code == ErrorCode.FILE_NOT_FOUND
    assert past_end.error_code == ErrorCode.INVALID_PARAMETER
    assert read_only.error_code == ErrorCode.INVALID_PARAMETER


@pytest.mark.asyncio
async def test_bare_parameter_name_is_not_a_value(make_executor, files, browser):
    result = await make_executor('FILEDELETE NAME').execute()
    tab = await make_executor('TAB T').execute()

    assert result.error_code == ErrorCode.MISSING_PARAMETER
    assert files.messages == []
    assert tab.error_code == ErrorCode.MISSING_PARAMETER
    assert browser.messages == []


@pytest.mark.asyncio
async def test_print_without_service_succeeds(make_executor):
    assert (await make_executor('PRINT').execute()).success


@pytest.mark.asyncio
async def test_version_sets_variable(make_executor):
    result = await make_executor('VERSION BUILD=8.9.7').execute()

    assert result.variables['!VERSION'] == '8.9.7'
