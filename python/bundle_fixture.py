"""
A miniature of the minified CLI bundle the default patch set targets.
Each section mirrors the shape of the real construct; names are arbitrary.
"""

from typing import Dict, Set

from shapepatch.patching.tree import SourceDocument

MODEL_LIST = 'var C2=["claude-sonnet-4.5","claude-sonnet-4","gpt-5"];'

AVAILABILITY = (
    "function Fxe(e,t){let n=t.find(r=>r.id===e);if(!n)return!1;"
    'return n.policy&&n.policy.state==="disabled"?!1:!0}'
)

RESOLVER = "function RWe(e,t){const n=C2.find(o=>o===t&&Fxe(o,e));return n||C2[0]}"

SCHEMA = (
    "var Ql=()=>({optional:()=>null}),E2=(e)=>({optional:()=>null});\n"
    "var Bxe={theme:Ql().optional(),model:E2(C2).optional(),"
    "selectedModel:E2(C2).optional(),logLevel:E2(LV).optional()};"
)

MENU = (
    'var FeI=[{label:"Claude Sonnet 4.5",value:"claude-sonnet-4.5"},'
    '{label:"Claude Sonnet 4",value:"claude-sonnet-4"},{label:"GPT-5",value:"gpt-5"}],'
    "Ui=({models:e,onSelect:t,onCancel:n})=>{"
    "let[r,i]=(0,mI.useState)(null);"
    "let s=(c)=>{i(c),t(c)},o=e&&e.length?e[0].id:\"claude-sonnet-4.5\","
    "d=FeI.map((c)=>({label:c.label,value:c.value})),G={label:\"Cancel\",value:null};"
    "return mI.createElement(\"div\",null,d.length,G.label,s,o,r)};"
)

OPTIONS = (
    "var N6=class{constructor(a,b){this.flags=a,this.description=b}choices(c){return this}};\n"
    "var Kxe=[new N6(\"--model <model>\",`Set the AI model to use (choices: ${C2.join(\", \")})`).choices(C2),"
    'new N6("--log-level <level>","Set the log level").choices(LV)];'
)

BANNER = 'var Wel=mI.createElement(Ink,null," Welcome to ",mI.createElement(Ink,{bold:!0},"Github Copilot"),"!");'

VERSION = (
    'var Ver=`${{VERSION:"0.0.339"}.VERSION} (GitHub Copilot CLI)`;\n'
    'var Info=mI.createElement(Bx,null,"status",mI.createElement(Bx,null,'
    'mI.createElement(Tx,{dimColor:!0}," L "),mI.createElement(Tx,null,"Session ID: ",sid())));\n'
    'var Chk={rgb:()=>Chk,bold:(s)=>s};var Warn=Chk.rgb(255,0,0).bold("warn"),Dim=Chk.bold("dim");'
)

BUNDLE = "\n".join(
    [
        "#!/usr/bin/env node",
        '"use strict";',
        "var mI=X0(Y0(),1);",
        MODEL_LIST,
        'var LV=["none","error","warning","info","debug","all"];',
        AVAILABILITY,
        RESOLVER,
        SCHEMA,
        MENU,
        OPTIONS,
        BANNER,
        VERSION,
        "",
    ]
)

RENAMES = {
    "C2": "q$",
    "LV": "Lz9",
    "Fxe": "hQ",
    "RWe": "Rm_",
    "Ql": "vS",
    "E2": "Enm",
    "Bxe": "Sch",
    "FeI": "mX",
    "Ui": "Pk",
    "mI": "R7",
    "N6": "Opt",
    "Kxe": "Opts",
    "e": "aa",
    "t": "bb",
    "n": "cc",
    "r": "dd",
    "i": "ff",
    "s": "gg",
    "o": "hh",
    "d": "jj",
    "G": "kk",
    "c": "ll",
}


RENAMED_KINDS = ("identifier", "shorthand_property_identifier_pattern")


def identifier_names(text: str) -> Set[str]:
    tree = SourceDocument.from_text(text).parse()
    return {node.text for node in tree.walk() if node.kind in RENAMED_KINDS}


def rename_identifiers(text: str, mapping: Dict[str, str]) -> str:
    """Renames identifier tokens only. Property names and string contents are untouched."""
    document = SourceDocument.from_text(text)
    tree = document.parse()
    for node in tree.walk():
        if node.kind in RENAMED_KINDS and node.text in mapping:
            tree.set_text(node, mapping[node.text])
    return document.restore(tree.render())
