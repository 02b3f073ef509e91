# Export every function's blocks, edges, instructions and bytes as JSON.
# Usage: analyzeHeadless ... -postScript export_functions.py <output.json>
# @category binfeat
# @runtime PyGhidra

import json

from ghidra.program.model.block import BasicBlockModel

MAX_DATA_REFS = 64
MAX_DATA_REF_BYTES = 1024


def addr_hex(address):
    return "%08x" % address.getOffset()


def read_bytes(address, length):
    if length <= 0:
        return b""
    try:
        raw = getBytes(address, int(length))
    except Exception:  # unmapped or uninitialized memory
        return b""
    return bytes(b & 0xFF for b in raw)


def function_bytes(function):
    out = bytearray()
    for rng in function.getBody():
        out.extend(read_bytes(rng.getMinAddress(), rng.getLength()))
    return bytes(out)


def edge_kind(flow):
    if flow.isCall():
        return "call"
    if flow.isFallthrough():
        return "fall_through"
    if flow.isConditional():
        return "conditional"
    return "unconditional"


def export_instruction(insn):
    operands = [insn.getDefaultOperandRepresentation(i) for i in range(insn.getNumOperands())]
    return {
        "address": addr_hex(insn.getAddress()),
        "mnemonic": insn.getMnemonicString(),
        "operands": operands,
        "length": insn.getLength(),
        "pcode": [op.getMnemonic() for op in insn.getPcode()],
    }


def data_refs_for(instructions, memory):
    seen = set()
    blobs = []
    for insn in instructions:
        for ref in insn.getReferencesFrom():
            if not ref.getReferenceType().isData():
                continue
            target = ref.getToAddress()
            block = memory.getBlock(target)
            if block is None or block.isExecute() or not block.isInitialized():
                continue
            key = target.getOffset()
            if key in seen:
                continue
            seen.add(key)
            length = min(MAX_DATA_REF_BYTES, block.getEnd().subtract(target) + 1)
            blob = read_bytes(target, length)
            if blob:
                blobs.append(blob.hex())
            if len(blobs) >= MAX_DATA_REFS:
                return blobs
    return blobs


def export_function(function, model, listing, memory):
    blocks = []
    edges = []
    starts = set()
    all_instructions = []

    code_blocks = list(model.getCodeBlocksContaining(function.getBody(), monitor))
    for block in code_blocks:
        starts.add(block.getFirstStartAddress().getOffset())

    for block in code_blocks:
        instructions = list(listing.getInstructions(block, True))
        all_instructions.extend(instructions)
        blocks.append(
            {
                "start": addr_hex(block.getFirstStartAddress()),
                "end": "%08x" % (block.getMaxAddress().getOffset() + 1),
                "instructions": [export_instruction(i) for i in instructions],
            }
        )
        it = block.getDestinations(monitor)
        while it.hasNext():
            ref = it.next()
            dest = ref.getDestinationBlock()
            if dest is None:
                continue
            dest_start = dest.getFirstStartAddress().getOffset()
            # calls into other functions are not CFG edges
            if dest_start not in starts:
                continue
            edges.append(
                {
                    "source": addr_hex(block.getFirstStartAddress()),
                    "target": "%08x" % dest_start,
                    "kind": edge_kind(ref.getFlowType()),
                }
            )

    return {
        "name": function.getName(),
        "address": addr_hex(function.getEntryPoint()),
        "bytes": function_bytes(function).hex(),
        "blocks": blocks,
        "edges": edges,
        "data_refs": data_refs_for(all_instructions, memory),
    }


def main():
    args = getScriptArgs()
    if not args:
        raise ValueError("usage: export_functions.py <output.json>")

    program = currentProgram
    model = BasicBlockModel(program)
    listing = program.getListing()
    memory = program.getMemory()

    functions = []
    for function in program.getFunctionManager().getFunctions(True):
        if function.isExternal() or function.isThunk():
            continue
        monitor.checkCancelled()
        functions.append(export_function(function, model, listing, memory))

    export = {
        "binary": program.getName(),
        "metadata": {
            "language": str(program.getLanguageID()),
            "compiler": str(program.getCompilerSpec().getCompilerSpecID()),
            "image_base": addr_hex(program.getImageBase()),
            "executable_format": program.getExecutableFormat(),
        },
        "functions": functions,
    }
    with open(args[0], "w") as f:
        json.dump(export, f)


main()
