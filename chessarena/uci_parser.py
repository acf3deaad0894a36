# Path: chessarena/uci_parser.py
"""
Purpose: Parse UCI `info` and `bestmove` lines into plain dicts.
Usage: Called by the engine client's line handlers while a search streams.
"""
import shlex
from typing import Dict, Optional


def parse_info_line(line: str) -> Dict:
    # Examples:
    #   info depth 14 seldepth 20 multipv 2 score cp 23 nodes 123456 pv e2e4 e7e5
    #   info depth 9 score mate -3 pv h7h8 g8h8
    #   info string NNUE evaluation enabled
    # Malformed lines come back empty.
    try:
        parts = shlex.split(line.strip())
    except ValueError:
        return {}
    if not parts or parts[0] != "info":
        return {}
    out: Dict = {}
    it = iter(parts[1:])
    try:
        for tok in it:
            if tok == 'depth':
                out['depth'] = int(next(it, '0'))
            elif tok == 'seldepth':
                out['seldepth'] = int(next(it, '0'))
            elif tok == 'multipv':
                out['multipv'] = int(next(it, '1'))
            elif tok == 'nodes':
                out['nodes'] = int(next(it, '0'))
            elif tok == 'nps':
                out['nps'] = int(next(it, '0'))
            elif tok == 'score':
                kind = next(it, '')
                val = next(it, '0')
                if kind == 'cp':
                    out['score'] = {'cp': int(val)}
                elif kind == 'mate':
                    out['score'] = {'mate': int(val)}
            elif tok == 'pv':
                out['pv'] = list(it)
                break
            elif tok == 'string':
                out['string'] = ' '.join(list(it))
                break
    except ValueError:
        return {}
    return out


def parse_bestmove_line(line: str) -> Optional[Dict]:
    # bestmove e2e4 ponder e7e5
    parts = line.split()
    if len(parts) < 2 or parts[0] != 'bestmove':
        return None
    out = {'move': parts[1], 'ponder': None}
    if len(parts) >= 4 and parts[2] == 'ponder':
        out['ponder'] = parts[3]
    return out
